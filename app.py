# app.py - learning path service
# - Thin HTTP surface over LearningPathEngine
# - Engine and stores are built once at startup

import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse

import db
from engines.base import SESSION_COMPLETED_EVENT, InvalidInputError, StorageError
from engines.profile_builder import ProfileBuilder
from engines.recommendations import RecommendationGenerator
from env_validation import get_env_bool, get_env_float, get_env_int, validate_environment
from learning_path import LearningPathEngine, require_id
from schemas import (
    LearningEvent,
    LearningPath,
    PreferenceOverrides,
    SessionCompletedRequest,
    StepCompletionRequest,
    TopicProgress,
    TopicResultsRequest,
)
from topic_graph import load_topic_graph
from tutor import LLMTextGenerator

logger = logging.getLogger(__name__)

_engine: Optional[LearningPathEngine] = None


def build_engine() -> LearningPathEngine:
    graph = load_topic_graph(os.getenv("TOPIC_GRAPH_PATH"))
    text_generator = LLMTextGenerator() if get_env_bool("LLM_ENABLED", True) else None
    recommendations = RecommendationGenerator(
        text_generator,
        graph,
        timeout=get_env_float("LLM_TIMEOUT", 5.0),
        breaker_threshold=get_env_int("LLM_BREAKER_THRESHOLD", 3),
        breaker_cooldown=get_env_float("LLM_BREAKER_COOLDOWN", 60.0),
    )
    return LearningPathEngine(
        db.SQLiteProgressStore(),
        db.SQLiteEventLog(),
        graph=graph,
        recommendation_generator=recommendations,
        profile_builder=ProfileBuilder(window=timedelta(days=get_env_int("EVENT_WINDOW_DAYS", 30))),
    )


@asynccontextmanager
async def _lifespan(_: FastAPI):
    global _engine
    validate_environment()
    db.init()
    _engine = build_engine()
    logger.info("Learning path engine ready (%d topics)", len(_engine.graph))
    try:
        yield
    finally:
        _engine.close()


app = FastAPI(title="Learning Path Service", lifespan=_lifespan)


def get_engine() -> LearningPathEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="engine not initialised")
    return _engine


@app.exception_handler(InvalidInputError)
async def _invalid_input_handler(_, exc: InvalidInputError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def _storage_error_handler(_, exc: StorageError):
    logger.error("Storage unavailable: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "storage unavailable"})


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/learning-path/{learner_id}/generate", response_model=LearningPath)
def generate_learning_path(
    learner_id: str,
    preferences: Optional[PreferenceOverrides] = None,
    engine: LearningPathEngine = Depends(get_engine),
) -> LearningPath:
    return engine.generate(learner_id, preferences)


@app.get("/learning-path/{learner_id}", response_model=LearningPath)
def get_active_learning_path(
    learner_id: str,
    engine: LearningPathEngine = Depends(get_engine),
) -> LearningPath:
    path = engine.get_active(learner_id)
    if path is None:
        raise HTTPException(status_code=404, detail="no active learning path")
    return path


@app.get("/learning-path/{learner_id}/paths/{path_id}", response_model=LearningPath)
def get_learning_path(
    learner_id: str,
    path_id: str,
    engine: LearningPathEngine = Depends(get_engine),
) -> LearningPath:
    path = engine.get_path(learner_id, path_id)
    if path is None:
        raise HTTPException(status_code=404, detail="learning path not found")
    return path


@app.post("/learning-path/{learner_id}/steps/{step_id}")
def complete_learning_path_step(
    learner_id: str,
    step_id: str,
    body: StepCompletionRequest,
    engine: LearningPathEngine = Depends(get_engine),
) -> Dict[str, Any]:
    updated = engine.complete_step(learner_id, step_id, body.completed)
    return {"updated": updated}


@app.post("/progress/{learner_id}/topics/{topic}", response_model=TopicProgress)
def record_topic_progress(
    learner_id: str,
    topic: str,
    body: TopicResultsRequest,
    engine: LearningPathEngine = Depends(get_engine),
) -> TopicProgress:
    learner_id = require_id(learner_id, "learner_id")
    if topic not in engine.graph:
        raise HTTPException(status_code=404, detail=f"unknown topic: {topic}")
    return db.record_topic_results(engine.progress_store, learner_id, topic, body.results)


@app.post("/events/{learner_id}/sessions", response_model=LearningEvent)
def record_learning_session(
    learner_id: str,
    body: SessionCompletedRequest,
    engine: LearningPathEngine = Depends(get_engine),
) -> LearningEvent:
    learner_id = require_id(learner_id, "learner_id")
    return engine.event_log.append(
        learner_id,
        SESSION_COMPLETED_EVENT,
        {
            "topic": body.topic,
            "problemsAttempted": body.problems_attempted,
            "accuracy": body.accuracy,
        },
    )
