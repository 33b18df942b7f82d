# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""ephemeral_env - throwaway kind environments for end-to-end generator runs."""

from __future__ import annotations

import io
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console


class ThreadAwareConsole:
    """Console proxy that sends each scenario thread's output to its own buffer.

    Parallel scenarios would interleave their step panels otherwise; the
    orchestrator replays every buffer as one block once its scenario ends.
    """

    def __init__(self, real_console: Console) -> None:
        object.__setattr__(self, "_real", real_console)
        object.__setattr__(self, "_local", threading.local())

    def __getattr__(self, name: str):
        target = getattr(self._local, "console", self._real)
        return getattr(target, name)

    @contextmanager
    def buffered(self, label: str | None = None) -> Iterator[io.StringIO]:
        """Capture this thread's output, headed by a rule naming *label*."""
        buf = io.StringIO()
        scoped = Console(file=buf, stderr=False, width=self._real.width)
        if label:
            scoped.rule(label)
        self._local.console = scoped
        try:
            yield buf
        finally:
            del self._local.console

    def replay(self, text: str) -> None:
        """Write previously rendered output without re-parsing markup."""
        self._real.out(text, end="", highlight=False)


console = ThreadAwareConsole(Console(stderr=True))
logger = logging.getLogger("ephemeral_env")
