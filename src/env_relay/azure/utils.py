from typing import Iterable

from sanic.log import logger

from env_relay.azure.models import Pipeline, PipelineMatch, SecureFile


def match_key(filename: str) -> str:
    """The part of a file name after its last dot, or the whole name."""
    return filename.rsplit(".", 1)[-1]


def match_score(key: str, name: str) -> int:
    """
    Count the distinct characters of ``key`` that occur anywhere in ``name``.

    Comparison is case-insensitive and ignores order, e.g. ``"css"`` against
    ``"deploy-css"`` scores 2.
    """
    name = name.lower()
    return sum(1 for char in set(key.lower()) if char in name)


def select_pipeline(key: str, pipelines: Iterable[Pipeline]) -> PipelineMatch:
    """
    Pick the pipeline whose name scores highest against the match key.

    Ties go to the pipeline listed first. A best score of zero, or an empty
    listing (score -1), yields a match without a pipeline.
    """
    best: Pipeline | None = None
    best_score = -1
    for pipeline in pipelines:
        score = match_score(key, pipeline.name)
        logger.debug(
            "Pipeline %s (%d) scores %d for key %r",
            pipeline.name,
            pipeline.id,
            score,
            key,
        )
        if score > best_score:
            best = pipeline
            best_score = score

    if best_score <= 0:
        return PipelineMatch(key=key, pipeline=None, score=best_score)
    return PipelineMatch(key=key, pipeline=best, score=best_score)


def find_secure_file(files: Iterable[SecureFile], name: str) -> SecureFile | None:
    wanted = name.casefold()
    for secure_file in files:
        if secure_file.name.casefold() == wanted:
            return secure_file
    return None
