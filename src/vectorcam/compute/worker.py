"""Computation task: turns one toolpath request into a machined path.

The task never touches the registry.  It receives a self-contained request
and reports back through *post* with the message kinds the dispatcher
understands::

    {"running": bool}                 liveness
    {"progress": True, "pass": n}     one per finished Z level
    {"toolpath": "<json document>"}   final result
    {"error": "<text>"}               failure
"""

from __future__ import annotations

import logging
from typing import Callable

from ..core.interchange import decode_document, dumps
from ..core.operation import ToolpathParameters
from ..core.toolpath import compute_toolpath

logger = logging.getLogger(__name__)

Post = Callable[[dict], None]


def run_task(message: dict, post: Post) -> None:
    """Compute the toolpath described by *message* and post the outcome."""
    post({"running": True})
    try:
        data = message["data"]
        source = decode_document(data["toolpath"])
        params = ToolpathParameters.from_user_data(source.user_data)
        logger.debug(
            "Task %s: %s on %d lines",
            data.get("index"), params.operation.label, len(source.lines()),
        )

        result = compute_toolpath(
            source, params,
            on_pass=lambda i: post({"progress": True, "pass": i}),
        )
        payload = dumps(result)
    except Exception as exc:
        post({"running": False})
        post({"error": f"{type(exc).__name__}: {exc}"})
        return

    post({"running": False})
    post({"toolpath": payload})


def task_main(message: dict, queue) -> None:
    """Process entry point: run the task, posting into *queue*."""
    run_task(message, queue.put)
