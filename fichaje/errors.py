"""Domain exceptions raised by the clock actions."""

from __future__ import annotations


class FichajeError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, notice: str) -> None:
        super().__init__(notice)
        self.notice = notice

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.notice}


class ClockActionRejected(FichajeError):
    """Action attempted in the wrong state; nothing was recorded."""

    code = "action_rejected"
    status_code = 409


class StoreError(FichajeError):
    code = "store_unavailable"
    status_code = 503

    def __init__(self, notice: str = "No se pudo registrar el fichaje. Inténtalo de nuevo.") -> None:
        super().__init__(notice)
