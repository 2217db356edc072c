import argparse
import asyncio
import logging
from typing import AsyncContextManager, Callable, Dict, List, Optional

from .artifacts import write_artifacts
from .budget import ExplorationBudget
from .config import Settings
from .driver import Driver, PlaywrightDriver
from .explorer import ExplorationResult, GraphExplorer, HaltReason
from .guided import GuidedRecorder
from .input_generator import InputValueGenerator
from .oracle import build_oracle
from .path_enumerator import Path, all_paths, paths_for_workflow
from .test_case_generator import TestCase, TestCaseSynthesizer

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Explore a web app and derive test workflows from its graph")
    parser.add_argument("--url", required=True, help="Target web app URL to explore")
    parser.add_argument("--headless", action="store_true", help="Run browser in headless mode")
    parser.add_argument("--out", default="run_artifacts", help="Directory to save run artefacts")
    parser.add_argument("--max-visits", type=int, default=50, help="Maximum number of distinct states to record")
    parser.add_argument("--max-depth", type=int, default=10, help="Maximum depth of the exploration tree")
    parser.add_argument("--max-seconds", type=float, default=None, help="Wall-clock limit for the exploration")
    parser.add_argument("--context", default=None, help="Short description of the site, passed to the oracle")
    parser.add_argument("--offline", action="store_true", help="Use the heuristic oracle even if an API key is set")
    parser.add_argument("--workflow-suites", action="store_true",
                        help="Synthesize test cases from per-workflow paths instead of all paths")
    parser.add_argument("--guided", action="store_true",
                        help="Also record one oracle-guided walk from the start URL and add its test cases")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


async def run(
    args: argparse.Namespace,
    settings: Settings,
    driver_factory: Optional[Callable[[], AsyncContextManager[Driver]]] = None,
) -> Dict[str, object]:
    oracle = build_oracle(settings, offline=args.offline)
    inputs = InputValueGenerator(settings.credentials)
    budget = ExplorationBudget(max_visits=args.max_visits, max_depth=args.max_depth, max_seconds=args.max_seconds)
    synthesizer = TestCaseSynthesizer()
    if driver_factory is None:
        def driver_factory() -> PlaywrightDriver:
            return PlaywrightDriver(headless=args.headless, timeout_ms=settings.driver_timeout_ms)

    async with driver_factory() as driver:
        explorer = GraphExplorer(driver, oracle=oracle, budget=budget, inputs=inputs)
        result: ExplorationResult = await explorer.explore(args.url)

        guided_cases: List[TestCase] = []
        if args.guided and result.halt_reason == HaltReason.FATAL_DRIVER_ERROR:
            logger.warning("Browser session is gone, skipping guided recording")
        elif args.guided:
            recording = await GuidedRecorder(driver, oracle).record(args.url)
            guided_cases = synthesizer.from_actions(recording.actions)

    graph = result.graph.snapshot()
    paths = all_paths(graph)
    workflow_paths: Dict[str, List[Path]] = {
        wf_id: paths_for_workflow(graph, wf.members) for wf_id, wf in result.workflows.items()
    }
    if args.workflow_suites:
        cases = [tc for wf_paths in workflow_paths.values() for tc in synthesizer.from_paths(graph, wf_paths)]
    else:
        cases = synthesizer.from_paths(graph, paths)
    cases.extend(guided_cases)

    write_artifacts(args.out, result, paths, cases, workflow_paths)
    return {"result": result, "paths": paths, "test_cases": cases}


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    settings = Settings.from_env().override(website_context=args.context)

    print(f"Starting exploration of {args.url}")
    outcome = asyncio.run(run(args, settings))
    result: ExplorationResult = outcome["result"]  # type: ignore[assignment]
    print(f"Exploration finished ({result.halt_reason.value}). States:", result.graph.state_count)
    print("Transitions:", result.graph.transition_count)
    print("Workflows:", len(result.workflows))
    print("Paths:", len(outcome["paths"]))  # type: ignore[arg-type]
    print("Test cases:", len(outcome["test_cases"]))  # type: ignore[arg-type]
    print("Artefacts written to", args.out)


if __name__ == "__main__":
    main()
