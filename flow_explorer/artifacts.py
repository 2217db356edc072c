"""Export of exploration results as plain JSON / GraphML files."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Sequence

import networkx as nx

from .explorer import ExplorationResult
from .path_enumerator import Path
from .test_case_generator import TestCase

logger = logging.getLogger(__name__)


def _dump(path: str, payload: Any) -> None:
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)


def write_artifacts(
    output_dir: str,
    result: ExplorationResult,
    paths: Sequence[Path],
    test_cases: Sequence[TestCase],
    workflow_paths: Dict[str, List[Path]] | None = None,
) -> Dict[str, str]:
    """Write every artifact into `output_dir` and return name -> file path."""
    os.makedirs(output_dir, exist_ok=True)
    files = {
        "summary": os.path.join(output_dir, "summary.json"),
        "graph": os.path.join(output_dir, "graph.json"),
        "graphml": os.path.join(output_dir, "graph.graphml"),
        "paths": os.path.join(output_dir, "paths.json"),
        "workflows": os.path.join(output_dir, "workflows.json"),
        "test_cases": os.path.join(output_dir, "test_cases.json"),
    }

    _dump(files["summary"], result.to_dict())
    _dump(files["graph"], result.graph.to_dict())
    nx.write_graphml(result.graph.to_networkx(), files["graphml"])
    _dump(files["paths"], [list(p) for p in paths])
    _dump(files["workflows"], {
        wf_id: {**wf.to_dict(), "paths": (workflow_paths or {}).get(wf_id, [])}
        for wf_id, wf in result.workflows.items()
    })
    _dump(files["test_cases"], [tc.to_dict() for tc in test_cases])

    logger.info("Artifacts written to %s", output_dir)
    return files
