import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flf_coach.api.chat import INVALID_REQUEST_ERROR
from flf_coach.api.chat import router as chat_router
from flf_coach.services.llm import OPENAI_API_KEY

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title="FLF Coach Chat Backend")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


@app.on_event("startup")
def on_startup() -> None:
    if not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set. Set it before using /chat.")


@app.exception_handler(RequestValidationError)
async def chat_validation_handler(request: Request, exc: RequestValidationError):
    # /chat reports every failure in-band so the app keeps a single decoding path.
    if request.url.path == "/chat":
        logger.error("chat_unparseable_body errors=%s", exc.errors()[:3])
        return JSONResponse(status_code=200, content={"reply": None, "error": INVALID_REQUEST_ERROR})
    return await request_validation_exception_handler(request, exc)


app.include_router(chat_router)


def run() -> None:
    """Console entry point for the backend."""
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    try:
        port = int(os.getenv("PORT", "3000"))
    except ValueError:
        port = 3000
    logger.info("FLF chat backend listening on port %s", port)
    uvicorn.run("flf_coach.main:app", host=host, port=port, reload=False)
