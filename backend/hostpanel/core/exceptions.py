from fastapi import Request
from fastapi.responses import JSONResponse

DIAGNOSTIC_LIMIT = 500


def truncate(text: str, limit: int = DIAGNOSTIC_LIMIT) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class PanelError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"detail": self.message}


class InvalidInput(PanelError):
    """Rejected before any external call is made."""
    status_code = 400


class NotFound(PanelError):
    status_code = 404


class NotConfigured(PanelError):
    status_code = 409


class ExternalToolError(PanelError):
    """
    An external tool (nginx, certbot, mysql, pm2, apt ...) failed.
    The raw diagnostic is kept so the operator sees what the tool said.
    """
    status_code = 502

    def __init__(self, tool: str, diagnostic: str = "", returncode=None):
        self.tool = tool
        self.diagnostic = truncate(diagnostic)
        self.returncode = returncode
        message = f"{tool} failed"
        if self.diagnostic:
            message = f"{message}: {self.diagnostic}"
        super().__init__(message)

    def to_dict(self):
        return {
            "detail": self.message,
            "tool": self.tool,
            "diagnostic": self.diagnostic,
            "returncode": self.returncode,
        }


async def panel_error_handler(request: Request, exc: PanelError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
