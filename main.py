import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quiz_engine.core.config import LOG_LEVEL
from quiz_engine.core.exceptions import QuizEngineError
from api.health import router as health_router
from api.quiz import router as quiz_router
from api.attempts import router as attempts_router

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Quiz Engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(QuizEngineError)
async def quiz_engine_error_handler(request: Request, exc: QuizEngineError):
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.get("/")
async def root():
    return {"message": "Welcome to the Quiz Engine API"}

app.include_router(health_router)
app.include_router(quiz_router)
app.include_router(attempts_router)
