from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from expr_compiler import CompilationArtifacts, ExpressionCompilerEngine, TokenKind, ast_to_dict, span_to_dict
from webapp.interpreter import IRInterpreter

logger = logging.getLogger(__name__)

app = FastAPI(title="Expression IR Compiler", version="1.0.0")

STATIC_DIR = Path(__file__).parent / "static"
if STATIC_DIR.exists():
	app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)


class CompileRequest(BaseModel):
	# Example: "(1 + 2) / 3 * 5"
	source: str
	integer_literals: bool = False


class RunRequest(CompileRequest):
	variables: Dict[str, float] = Field(default_factory=dict)


def _compile_payload(art: CompilationArtifacts) -> Dict[str, Any]:
	return {
		"duration_ms": art.duration_ms,
		"token_count": len(art.tokens),
		"diagnostic_count": len(art.diagnostics),
		"has_ast": art.ast is not None,
		"diagnostics": [
			{
				"severity": d.severity.name,
				"message": d.message,
				"hint": d.hint,
				"span": span_to_dict(d.span),
			}
			for d in art.diagnostics
		],
		"tokens": [
			{
				"kind": t.kind.name,
				"text": t.text,
				"position": t.position,
			}
			for t in art.tokens
			if t.kind != TokenKind.EOF
		],
		"ast": ast_to_dict(art.ast) if art.ast is not None else None,
		"ir": art.program.lines() if art.program is not None else [],
	}


@app.get("/", response_class=HTMLResponse)
def index() -> HTMLResponse:
	index_path = STATIC_DIR / "index.html"
	if index_path.exists():
		return HTMLResponse(index_path.read_text(encoding="utf-8"))
	return HTMLResponse(
		"<h2>Expression IR Compiler API</h2><p>POST <code>/api/compile</code> with JSON: <code>{\"source\": \"(1 + 2) * x\"}</code></p>"
	)


@app.get("/health")
def health() -> Dict[str, str]:
	return {"status": "ok"}


@app.post("/api/compile")
def compile_source(req: CompileRequest) -> Dict[str, Any]:
	engine = ExpressionCompilerEngine(integer_literals=req.integer_literals)
	return _compile_payload(engine.compile(req.source))


@app.post("/api/run")
def run_source(req: RunRequest) -> Dict[str, Any]:
	engine = ExpressionCompilerEngine(integer_literals=req.integer_literals)
	art = engine.compile(req.source)
	payload = _compile_payload(art)

	value = None
	steps = 0
	runtime_error = None
	if art.program is not None:
		run_art = IRInterpreter(req.variables).run(art.program)
		value = run_art.value
		steps = run_art.steps
		if run_art.runtime_error is not None:
			runtime_error = {"message": run_art.runtime_error.message, "register": run_art.runtime_error.register}
	else:
		logger.debug("skipping run of %r: compilation failed", req.source)

	payload["run"] = {
		"value": value,
		"steps": steps,
		"runtime_error": runtime_error,
	}
	return payload
