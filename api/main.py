from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from pathlib import Path
import logging, os, tempfile

from rfp_extraction.config import config
from rfp_extraction.estimator import estimate_to_report_text, run_anc_estimator
from rfp_extraction.main import RfpAnalysisPipeline, WorkbookImportError
from rfp_extraction.schemas import AncEstimateResult, AnalysisResult, StructuredWorkbook, WorkbookDiffSummary
from rfp_extraction.workbook import workbook_to_markdown, workbook_to_sheets

logger = logging.getLogger("rfp_extraction.api")

app = FastAPI(title="rfp-extraction")
app.add_middleware(CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"], allow_headers=["*"])

# One pipeline per process; it holds the last workbook for import diffs
pipeline = RfpAnalysisPipeline()


class AnalyzeRequest(BaseModel):
    text: str
    run_estimate: bool = False


class EstimateRequest(BaseModel):
    text: str = ""
    project_title: Optional[str] = None
    client_name: Optional[str] = None
    venue_name: Optional[str] = None


class EstimateResponse(BaseModel):
    estimate: AncEstimateResult
    report: str


class ImportRequest(BaseModel):
    sheets: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)


class ImportResponse(BaseModel):
    workbook: StructuredWorkbook
    diff: Optional[WorkbookDiffSummary] = None


@app.get("/health")
def health():
    return {"status": "ok", "has_workbook": pipeline.workbook is not None}


@app.post("/analyze", response_model=AnalysisResult)
async def analyze(request: AnalyzeRequest):
    return await pipeline.aanalyze(request.text, run_estimate=request.run_estimate)


@app.post("/upload", response_model=AnalysisResult)
async def upload(file: UploadFile = File(...), run_estimate: bool = False):
    suffix = Path(file.filename or "").suffix.lower()
    if suffix not in config.supported_formats:
        raise HTTPException(status_code=415, detail=f"Unsupported format '{suffix}'")

    content = await file.read()
    fd, tmp_path = tempfile.mkstemp(suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        # PDF parsing and classification are synchronous; keep them off the event loop
        return await run_in_threadpool(pipeline.analyze_file, tmp_path, run_estimate=run_estimate)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    finally:
        os.remove(tmp_path)


@app.post("/estimate", response_model=EstimateResponse)
def estimate(request: EstimateRequest):
    result = run_anc_estimator(
        request.text,
        project_title=request.project_title,
        client_name=request.client_name,
        venue_name=request.venue_name,
    )
    return EstimateResponse(estimate=result, report=estimate_to_report_text(result))


@app.get("/workbook/sheets")
def workbook_sheets():
    if pipeline.workbook is None:
        raise HTTPException(status_code=404, detail="No workbook yet. Analyze a document first.")
    return workbook_to_sheets(pipeline.workbook)


@app.post("/workbook/import", response_model=ImportResponse)
def import_workbook(request: ImportRequest):
    try:
        workbook, diff = pipeline.import_workbook(request.sheets)
    except WorkbookImportError as exc:
        logger.warning("Rejected workbook import: %s", exc)
        raise HTTPException(status_code=422, detail=str(exc))
    return ImportResponse(workbook=workbook, diff=diff)


@app.post("/workbook/markdown")
def markdown(workbook: StructuredWorkbook):
    return {"markdown": workbook_to_markdown(workbook)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
