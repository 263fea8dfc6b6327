"""Service worker update prompt (Python model of registerSW.js).

The registration layer is any callable accepting ``{'onNeedRefresh': fn}``
and returning an activation function ``update_sw(force_skip_waiting)``.
Each refresh notification asks the user once; acceptance activates the
waiting worker, refusal leaves it waiting until the next notification.
"""
from __future__ import annotations
from typing import Any, Callable, Dict

IDLE = 'Idle'
UPDATE_AVAILABLE = 'UpdateAvailable'
UPDATE_PROMPT = 'New app version available. Reload?'

RegisterSW = Callable[[Dict[str, Any]], Callable[[bool], Any]]


class UpdateController:
    def __init__(self, register_sw: RegisterSW, confirm: Callable[[str], bool]):
        self.state = IDLE
        self.pending_update = False
        self.prompts = 0
        self.activations = 0
        self._confirm = confirm
        self._update_sw = register_sw({'onNeedRefresh': self.on_need_refresh})

    def on_need_refresh(self):
        self.state = UPDATE_AVAILABLE
        self.pending_update = True
        self.prompts += 1
        approved = bool(self._confirm(UPDATE_PROMPT))
        if approved:
            self.activations += 1
            self._update_sw(True)
            self.pending_update = False
        # declined: the worker keeps waiting, pending_update stays set
        self.state = IDLE
        return approved
