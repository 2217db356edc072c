"""Flow Explorer: automated exploration of web applications and test workflow synthesis.

A browser session is walked depth-first from a start URL; every distinct page
becomes a State in a directed exploration graph, every working interaction a
Transition. The graph is then enumerated into paths and turned into test cases.

Key sub-modules:

fingerprint.py         – URL normalization; the canonical key of a page.
knowledge.py           – States, elements, actions, workflows and the exploration graph.
budget.py              – Visit / depth / time limits for one run.
driver.py              – Browser driver interface and its Playwright implementation.
oracle.py              – Language-model oracle (OpenAI) and an offline heuristic stand-in.
workflow_segmenter.py  – Groups visited states into workflows.
input_generator.py     – Plausible form values and the element -> action mapping.
explorer.py            – Depth-first graph explorer with backtracking.
guided.py              – Oracle-driven recording of a single walk.
path_enumerator.py     – Simple-path enumeration over the graph.
test_case_generator.py – Action sequences and paths -> structured test cases.
artifacts.py           – JSON / GraphML export.
"""
