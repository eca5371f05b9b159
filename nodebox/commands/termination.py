"""
Termination hooks - Tear managed nodes down exactly once when the process ends.

A test run can end through an explicit stop, SIGINT/SIGTERM or a plain
interpreter exit. All three routes funnel into one guarded call so nodes are
torn down once and containers are not leaked.
"""

import atexit
import os
import signal
import sys
import threading
from abc import ABC, abstractmethod

from rich.console import Console

from nodebox.commands.constants import TerminationOutcome

console = Console()

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class TerminationMixin(ABC):
    """At-most-once termination for objects owning external resources.

    Subclasses call _init_termination_state() from __init__, optionally
    _install_termination_hooks(), and implement _do_terminate().
    """

    def _init_termination_state(self):
        self._termination_lock = threading.RLock()
        self._termination_state = None  # None, "running" or "done"
        self._interrupted = False
        self._previous_handlers = {}
        self._exit_hook_installed = False

    def _install_termination_hooks(self):
        """Route SIGINT/SIGTERM and interpreter exit into _terminate_once()."""
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._on_signal)
        atexit.register(self._terminate_once)
        self._exit_hook_installed = True

    def remove_termination_hooks(self):
        """Restore the handlers that were active before installation."""
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()
        if self._exit_hook_installed:
            atexit.unregister(self._terminate_once)
            self._exit_hook_installed = False

    def _on_signal(self, signum, frame):
        # A second signal while tearing down means the user gave up waiting
        if self._interrupted:
            console.print("\n[red]Forced exit requested, nodes may be left behind[/red]")
            sys.stdout.flush()
            os._exit(1)

        self._interrupted = True
        console.print(
            f"\n[yellow]Received {signal.Signals(signum).name}, "
            "tearing down managed nodes...[/yellow]"
        )
        if self._terminate_once() is not TerminationOutcome.IN_PROGRESS:
            sys.exit(0)

    def _terminate_once(self) -> TerminationOutcome:
        """Run _do_terminate() unless it already ran or is running.

        A call that re-enters while teardown is running, such as a signal
        arriving on the same thread, returns IN_PROGRESS immediately.
        """
        with self._termination_lock:
            if self._termination_state == "done":
                return TerminationOutcome.ALREADY_DONE
            if self._termination_state == "running":
                return TerminationOutcome.IN_PROGRESS
            self._termination_state = "running"
            try:
                self._do_terminate()
            finally:
                self._termination_state = "done"
        return TerminationOutcome.PERFORMED

    @abstractmethod
    def _do_terminate(self):
        """Release owned resources. Runs under the termination lock."""
