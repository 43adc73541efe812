#
# Copyright 2025 The LevelSenseLocal contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Fixed-interval poll timer."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger('levelsense-local')


class PollScheduler:
    """Fires a callback every ``interval`` seconds once armed.

    Each tick runs the callback as its own task, so a slow pass never delays
    the next tick. Whether overlapping passes are allowed is the callback's
    decision.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[None]]):
        self.interval = interval
        self.callback = callback
        self.armed = False
        self.ticks = 0
        self._timer_task: Optional[asyncio.Task] = None
        self._pass_tasks: Set[asyncio.Task] = set()

    def arm(self) -> bool:
        """Start the timer. Returns False if it was already armed."""
        if self.armed:
            logger.debug("Poll scheduler already armed")
            return False

        self.armed = True
        self._timer_task = asyncio.create_task(self._timer_loop())
        minutes = self.interval / 60
        logger.info(f"Polling every {minutes:.0f} minute(s)")
        return True

    async def _timer_loop(self):
        try:
            while True:
                await asyncio.sleep(self.interval)
                self.ticks += 1
                task = asyncio.create_task(self._run_pass())
                self._pass_tasks.add(task)
                task.add_done_callback(self._pass_tasks.discard)
        except asyncio.CancelledError:
            logger.info("Poll timer cancelled")
            raise

    async def _run_pass(self):
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in poll pass: {e}", exc_info=True)

    async def stop(self):
        """Cancel the timer and any pass still running."""
        tasks = list(self._pass_tasks)
        if self._timer_task and not self._timer_task.done():
            tasks.append(self._timer_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timer_task = None
        logger.info("Stopped poll scheduler")
