"""
Rules Engine Service package for RequestKit.

This package decides which header-modification rules apply to a request
and turns them into rules the host network-filtering platform enforces.
It provides:

- app.main: API surface for conversion, analysis, template resolution and health.
- app.matching: URL pattern scoring and pattern utilities.
- app.rules: Rule model, condition evaluation and profile selection.
- app.variables: Variable scopes, built-in functions and template resolution.
- app.conversion: Platform rule conversion, resolution cache and the platform hand-off.
- app.processor: Request analysis and per-rule match statistics.
- app.monitoring: Usage analytics and per-rule timing.

Guidelines:
- Callers own rule and variable storage; every call works on a snapshot.
- A failing rule must never abort a conversion pass.
- Keep matching deterministic and observable (metrics + logs).
"""
