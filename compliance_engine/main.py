# compliance_engine/main.py
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException

from .config import Settings, get_settings
from .logging_config import logger
from .rule_validator import schema_errors, validate_rule_set, validate_template_placeholders
from .rules_engine import RuleLibrary, explain_rule
from .schemas import GenerationResult, HealthStatus, ProfileIn
from .service import ComplianceService, Enhancer
from .summary import summarize, tasks_by_phase
from .time_engine import today


def create_application(settings: Optional[Settings] = None,
                       library: Optional[RuleLibrary] = None,
                       enhancer: Optional[Enhancer] = None) -> FastAPI:
    """Build the app with its own rule library and service on app.state."""
    settings = settings or get_settings()
    if library is None:
        library = RuleLibrary(settings.rules_dir)
        summary = library.load()
        logger.info("Startup: %d rules loaded, %d file errors", summary["count"], len(summary["errors"]))

    service = ComplianceService(library, settings, enhancer)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Shutdown
        service.close()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.library = library
    app.state.service = service

    @app.get("/")
    def root():
        return {"message": "Compliance API running!"}

    @app.get("/health", response_model=HealthStatus)
    def health():
        return app.state.service.health_check()

    # ----- rule library -----
    @app.post("/rules/reload")
    def rules_reload():
        res = app.state.library.reload()
        app.state.service.clear_cache()
        return res

    @app.get("/rules/list")
    def rules_list():
        lib = app.state.library
        return {"count": len(lib), "ids": lib.ids()}

    @app.get("/rules/analysis")
    def rules_analysis():
        return app.state.library.analysis()

    @app.post("/rules/validate")
    def rules_validate(body: Dict[str, Any] = Body(...)):
        """Dry-run a rule set document without loading it."""
        res = validate_rule_set(body)
        issues = []
        for rule in body.get("rules") or []:
            if isinstance(rule, dict):
                issues += [f"{rule.get('id')}: {i}" for i in validate_template_placeholders(rule)["issues"]]
        return {**res, "schemaErrors": schema_errors(body), "placeholderIssues": issues}

    @app.post("/rules/evaluate/{rule_id}")
    def rules_eval_one(rule_id: str, body: ProfileIn):
        rule = app.state.library.get(rule_id)
        if not rule:
            raise HTTPException(status_code=404,
                                detail=f"Rule '{rule_id}' not loaded. Call /rules/reload or check /rules/list.")
        return explain_rule(rule, body.to_context(), app.state.settings)

    # ----- tasks -----
    @app.post("/tasks/generate", response_model=GenerationResult)
    def tasks_generate(body: ProfileIn, refresh: bool = False):
        svc = app.state.service
        profile = body.to_context()
        return svc.refresh(profile) if refresh else svc.generate(profile)

    @app.post("/tasks/summary")
    def tasks_summary(body: ProfileIn, top_n: int = 5):
        res = app.state.service.generate(body.to_context())
        tasks = res["tasks"]
        return {
            "source": res["source"],
            "phases": {k: [t["id"] for t in v] for k, v in tasks_by_phase(tasks).items()},
            **summarize(tasks, today(app.state.settings.timezone), top_n=top_n),
        }

    return app


app = create_application()
