"""Job KPI API server."""

from __future__ import annotations

import base64
import os
import shutil
import tempfile
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from skills.job_kpi.jobs import JobFromJsonError
from skills.job_kpi.pipeline import run
from skills.job_kpi.sources.job_nimbus import JobNimbusAuthError

SUPPORTED_SOURCES = {"jobnimbus", "sample"}


class KpiRequest(BaseModel):
    from_date: str = "forever"
    to_date: str = "today"
    filter: str = ""
    source: str = "jobnimbus"
    title: str = "Job KPI Report"
    include_sankey: bool = False


app = FastAPI(title="Job KPI API", version="0.1.0")

allowed_origins_raw = os.getenv("ALLOWED_ORIGINS", "*").strip()
if allowed_origins_raw == "*" or not allowed_origins_raw:
    allowed_origins = ["*"]
else:
    allowed_origins = [item.strip() for item in allowed_origins_raw.split(",") if item.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _read_png_data_url(path: Path) -> str:
    if not path.exists():
        return ""
    raw = path.read_bytes()
    encoded = base64.b64encode(raw).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def _runtime_root() -> Path:
    base = os.getenv("JOBKPI_RUNTIME_DIR", "").strip() or "/tmp/jobkpi_runtime"
    root = Path(base).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/kpi")
def run_kpi(payload: KpiRequest) -> dict[str, object]:
    source = payload.source.strip().lower()
    if source not in SUPPORTED_SOURCES:
        raise HTTPException(status_code=400, detail=f"Unsupported source: {payload.source}")

    transient_out = Path(tempfile.mkdtemp(prefix="kpi_", dir=str(_runtime_root())))
    sankey_path = transient_out / "sankey.png"
    try:
        result = run(
            source=source,
            from_date=payload.from_date,
            to_date=payload.to_date,
            filter_text=payload.filter.strip() or None,
            title=payload.title,
            sankey_path=str(sankey_path) if payload.include_sankey else None,
            token_dir=os.getenv("JOBKPI_TOKEN_DIR", ".tokens"),
            allow_interactive_auth=False,
            write_reports=False,
        )
        sankey_image_data_url = _read_png_data_url(sankey_path)
    except JobFromJsonError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except JobNimbusAuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        shutil.rmtree(transient_out, ignore_errors=True)

    return {
        "ok": True,
        "run_id": result.run_id,
        "jobs_loaded": result.stats.get("jobs_loaded", 0),
        "subjects": result.stats.get("subjects", []),
        "red_flags": result.red_flags,
        "warnings": result.warnings,
        "sankey_image_data_url": sankey_image_data_url,
    }
