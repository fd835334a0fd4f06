#!/usr/bin/env python3
"""
fsaudit CLI – Firestore security rules auditor

Usage:
  fsaudit --project PROJECT [options]
  fsaudit --project PROJECT --rules-file firestore.rules [options]

Rules are taken from --rules-file when given, otherwise from the Firebase CLI
(`firebase firestore:rules`) and finally from the Firebase Rules API. The
rules are sent to a Gemini model and the audit is printed (and optionally
written to --output).

Dependencies (setup.py):
  httpx
  requests
  firebase-admin
  google-auth
  pydantic
  loguru
  rich
  python-dotenv
"""

import argparse
import asyncio
import json
import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Union

import httpx
import requests
from dotenv import find_dotenv, load_dotenv
from firebase_admin import credentials
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from rich.console import Console
from rich.markup import escape

__version__ = "0.1.0"

# --- Constants ---
BANNER = r"""
  __                     _ _ _
 / _|___  __ _ _   _  __| (_) |_
| |_/ __|/ _` | | | |/ _` | | __|
|  _\__ \ (_| | |_| | (_| | | |_
|_| |___/\__,_|\__,_|\__,_|_|\__|
      Firestore security rules auditor
"""

FIRESTORE_MARKER = "service cloud.firestore"

# API endpoints
RULES_API_BASE_URL = "https://firebaserules.googleapis.com/v1"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

DEFAULT_MODEL = "gemini-2.0-flash"
RULES_API_TIMEOUT = 30
ANALYSIS_TIMEOUT = 120

STRUCTURED_MODE = "structured"
TEXT_MODE = "text"
AUDIT_MODES = (STRUCTURED_MODE, TEXT_MODE)

BAR_WIDTH = 30
REPORT_TITLE = "=== Firestore Security Rules Audit ==="

# CLI level name -> loguru level name
LOG_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "error": "ERROR",
    "fatal": "CRITICAL",
}
LEVEL_TAGS = {
    "DEBUG": "[DEBUG]",
    "INFO": "[*]",
    "SUCCESS": "[+]",
    "WARNING": "[!]",
    "ERROR": "[-]",
    "CRITICAL": "[FATAL]",
}


# --- Banner helper ---
def print_banner() -> None:
    """Prints the banner."""
    print(BANNER, file=sys.stderr)


# --- Errors ---

class AuditorError(Exception):
    """Base class for all fsaudit errors."""


class NotFoundError(AuditorError):
    """Raised when a rules file or the project's rules cannot be located."""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} not found: {resource_id}")
        self.resource_type = resource_type
        self.resource_id = resource_id


class InternalError(AuditorError):
    """Raised when a step that should not fail under normal conditions fails."""

    def __init__(self, message: str):
        super().__init__(f"Internal Error: {message}")


class AnalysisError(AuditorError):
    """Raised when the analysis model produces no usable output."""


# --- Logging ---

@dataclass
class LoggerConfig:
    level: str = "info"
    enable_console: bool = True
    enable_file: bool = False
    log_file: Optional[Path] = None
    verbose: bool = False


def resolve_log_level(cli_level: Optional[str]) -> str:
    """Returns the CLI level, else a valid LOG_LEVEL env value, else 'info'."""
    if cli_level:
        return cli_level
    env_level = (os.getenv("LOG_LEVEL") or "").strip().lower()
    if env_level == "warning":
        env_level = "warn"
    return env_level if env_level in LOG_LEVELS else "info"


def _console_format(verbose: bool) -> Callable[[Dict[str, Any]], str]:
    def fmt(record: Dict[str, Any]) -> str:
        tag = LEVEL_TAGS.get(record["level"].name, f"[{record['level'].name}]")
        line = "<level>" + tag + " {message}</level>\n"
        if verbose:
            line += "{exception}"
        return line
    return fmt


def init_logger(config: LoggerConfig):
    """Replaces all loguru sinks according to `config` and returns the logger to inject."""
    logger.remove()
    level = LOG_LEVELS.get(config.level, "INFO")
    if config.enable_console:
        logger.add(
            sys.stderr,
            level=level,
            format=_console_format(config.verbose),
            backtrace=config.verbose,
            diagnose=False,
        )
    if config.enable_file and config.log_file:
        # loguru creates missing parent directories
        logger.add(str(config.log_file), level=level, serialize=True, diagnose=False)
    return logger.bind(app="fsaudit")


# --- Data model ---

Severity = Literal["low", "medium", "high", "critical"]


@dataclass(frozen=True)
class RuleDocument:
    """One Firestore rules source as resolved for this run."""

    text: str
    origin: Optional[str] = None

    @property
    def byte_length(self) -> int:
        return len(self.text.encode("utf-8"))


class AuditModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class AuditRequest(AuditModel):
    rules: str = Field(min_length=1)
    project_id: Optional[str] = None


class Vulnerability(AuditModel):
    severity: Severity
    description: str
    recommendation: str
    location: Optional[str] = None


class AuditResult(AuditModel):
    summary: str
    vulnerabilities: List[Vulnerability]
    best_practices: List[str] = Field(alias="bestPractices")
    overall_rating: int = Field(alias="overallRating", ge=1, le=10, strict=True)


# Gemini responseSchema (OpenAPI subset) mirroring AuditResult
RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING"},
        "vulnerabilities": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "severity": {"type": "STRING", "enum": ["low", "medium", "high", "critical"]},
                    "description": {"type": "STRING"},
                    "recommendation": {"type": "STRING"},
                    "location": {"type": "STRING"},
                },
                "required": ["severity", "description", "recommendation"],
            },
        },
        "bestPractices": {"type": "ARRAY", "items": {"type": "STRING"}},
        "overallRating": {"type": "INTEGER", "minimum": 1, "maximum": 10},
    },
    "required": ["summary", "vulnerabilities", "bestPractices", "overallRating"],
}


# --- Rule Source Resolution ---

RuleProvider = Callable[[], Optional[RuleDocument]]


def select_firestore_file(files: List[Any]) -> Optional[Dict[str, Any]]:
    """Returns the first ruleset file whose content carries the Firestore marker."""
    for f in files:
        if not isinstance(f, dict):
            continue
        content = f.get("content")
        if isinstance(content, str) and FIRESTORE_MARKER in content:
            return f
    return None


class RuleResolver:
    """Obtains rules text from a local file, the Firebase CLI or the Firebase Rules API."""

    def __init__(
        self,
        project_id: Optional[str],
        rules_file: Optional[Union[str, Path]] = None,
        *,
        firebase_bin: str = "firebase",
        service_account: Optional[Union[str, Path]] = None,
        log=logger,
    ):
        self.project_id = project_id
        self.rules_file = Path(rules_file) if rules_file else None
        self.firebase_bin = firebase_bin
        self.service_account = Path(service_account) if service_account else None
        self.log = log

    def resolve(self) -> RuleDocument:
        """Returns the first rules document found; raises NotFoundError when none is."""
        if self.rules_file:
            return self._read_rules_file(self.rules_file)

        if not self.project_id:
            raise NotFoundError("Firestore security rules", "(no project ID)")

        self.log.info(f"Attempting to fetch Firestore security rules for project: {self.project_id}")
        for label, provider in self._providers():
            self.log.debug(f"Trying to fetch rules via {label} for project: {self.project_id}")
            document = provider()
            if document is not None:
                self.log.success(f"Successfully fetched rules via {label}")
                return document
            self.log.debug(f"{label} did not yield Firestore rules")

        raise NotFoundError("Firestore security rules", self.project_id)

    def _providers(self) -> List[Tuple[str, RuleProvider]]:
        return [
            ("Firebase CLI", self._fetch_with_cli),
            ("Firebase Rules API", self._fetch_with_api),
        ]

    # Local file -------------------------------------------------------------
    def _read_rules_file(self, path: Path) -> RuleDocument:
        path = path.expanduser().resolve()
        self.log.info(f"Loading rules from: {path}")
        if not path.exists():
            raise NotFoundError("Rules file", str(path))
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise InternalError(f"Could not read rules file {path}: {e}") from e
        if not text.strip():
            raise NotFoundError("Firestore security rules", str(path))

        document = RuleDocument(text=text, origin=f"file:{path}")
        self.log.info(f"Rules file loaded ({document.byte_length} bytes)")
        return document

    # Firebase CLI -----------------------------------------------------------
    def _run_command(self, args: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            args, capture_output=True, check=True, text=True, encoding="utf-8", errors="replace"
        )

    def _fetch_with_cli(self) -> Optional[RuleDocument]:
        cmd = [self.firebase_bin, "firestore:rules", f"--project={self.project_id}"]
        try:
            completed = self._run_command(cmd)
        except subprocess.CalledProcessError as e:
            self.log.debug(f"Firebase CLI exited with code {e.returncode}: {(e.stderr or '').strip()}")
            return None
        except OSError as e:
            self.log.debug(f"Firebase CLI not available: {e}")
            return None

        output = completed.stdout or ""
        if FIRESTORE_MARKER not in output:
            self.log.debug("Firebase CLI output did not contain valid Firestore rules")
            return None
        return RuleDocument(text=output, origin="cli:firebase")

    # Firebase Rules API -----------------------------------------------------
    def _authorized_session(self) -> requests.Session:
        """Builds a requests session carrying ambient (or service-account) Google credentials."""
        try:
            if self.service_account:
                cred = credentials.Certificate(str(self.service_account))
            else:
                cred = credentials.ApplicationDefault()
            return AuthorizedSession(cred.get_credential())
        except (GoogleAuthError, ValueError, OSError) as e:
            raise InternalError(f"Could not load Google credentials: {e}") from e

    def _get_json(self, session: requests.Session, url: str) -> Optional[Dict[str, Any]]:
        try:
            resp = session.get(url, timeout=RULES_API_TIMEOUT)
            resp.raise_for_status()
        except (requests.RequestException, GoogleAuthError) as e:
            raise InternalError(f"Failed to access Firebase Rules API: {e}") from e
        try:
            data = resp.json()
        except ValueError:
            self.log.debug(f"Firebase Rules API returned a non-JSON body for {url}")
            return None
        return data if isinstance(data, dict) else None

    def _fetch_with_api(self) -> Optional[RuleDocument]:
        session = self._authorized_session()
        try:
            listing = self._get_json(session, f"{RULES_API_BASE_URL}/projects/{self.project_id}/rulesets") or {}
            rulesets = listing.get("rulesets")
            if not rulesets or not isinstance(rulesets, list):
                self.log.debug("No rulesets found for this project")
                return None

            latest = rulesets[0].get("name") if isinstance(rulesets[0], dict) else None
            if not latest:
                self.log.debug("Latest ruleset has no name")
                return None

            content = self._get_json(session, f"{RULES_API_BASE_URL}/{latest}") or {}
            source = content.get("source") or {}
            files = source.get("files") if isinstance(source, dict) else None
            if not files or not isinstance(files, list):
                self.log.debug(f"Ruleset {latest} contains no files")
                return None

            match = select_firestore_file(files)
            if match is None:
                self.log.debug(f"No Firestore rules found in ruleset {latest}")
                return None
            return RuleDocument(text=match["content"], origin=f"api:{latest}/{match.get('name', '')}")
        finally:
            session.close()


# --- Audit Request ---

REVIEW_FOCUS = (
    "Identifying any security vulnerabilities or overly permissive rules",
    "Checking for proper authentication requirements",
    "Evaluating data validation rules",
    "Assessing field-level security",
    "Identifying any potential performance issues",
    "Suggesting best practices improvements",
)

STRUCTURED_ANSWER = """Respond with a structured analysis that includes:
- A summary of the overall security posture
- A list of vulnerabilities found (with severity rating: low, medium, high or critical)
- Specific recommendations for each vulnerability
- Best practices that should be implemented
- An overall security rating from 1-10"""

TEXT_ANSWER = """Provide your analysis in a clear, readable format with sections for:
- Summary
- Vulnerabilities
- Recommendations
- Best Practices"""

REFERENCE_EXAMPLES = """
Insecure: everything is readable and writable by anyone.
```
rules_version = '2';
service cloud.firestore {
  match /databases/{database}/documents {
    match /{document=**} {
      allow read, write: if true;
    }
  }
}
```
Secure: users may only touch their own document, everything else is denied.
```
rules_version = '2';
service cloud.firestore {
  match /databases/{database}/documents {
    match /users/{userId} {
      allow read, write: if request.auth != null && request.auth.uid == userId;
    }
  }
}
```

Insecure: any signed-in user can write arbitrary fields.
```
match /posts/{postId} {
  allow create, update: if request.auth != null;
}
```
Secure: writes are limited to known fields with checked types and ownership.
```
match /posts/{postId} {
  allow create, update: if request.auth != null
    && request.resource.data.keys().hasOnly(['title', 'body', 'authorId', 'createdAt'])
    && request.resource.data.title is string
    && request.resource.data.title.size() <= 100
    && request.resource.data.body is string
    && request.resource.data.authorId == request.auth.uid
    && request.resource.data.createdAt == request.time;
}
```

Insecure: every profile is publicly readable.
```
match /profiles/{userId} {
  allow read: if true;
  allow write: if request.auth.uid == userId;
}
```
Secure: profiles are readable by the owner or their friends only.
```
match /profiles/{userId} {
  allow read: if request.auth != null
    && (request.auth.uid == userId
        || exists(/databases/$(database)/documents/friends/$(request.auth.uid)_$(userId)));
  allow update: if request.auth != null && request.auth.uid == userId;
}
```
"""


def build_prompt(request: AuditRequest, mode: str = STRUCTURED_MODE, include_examples: bool = False) -> str:
    """Builds the analysis prompt; the rules text is embedded verbatim."""
    if mode not in AUDIT_MODES:
        raise ValueError(f"Unknown audit mode: {mode}")

    lines = [
        "You are a Firebase security expert conducting an audit of Firestore security rules.",
        "",
        "Please analyze the following Firestore security rules carefully and provide a "
        "comprehensive security assessment.",
        "",
        "Focus on:",
    ]
    lines.extend(f"{i}. {item}" for i, item in enumerate(REVIEW_FOCUS, 1))
    if request.project_id:
        lines.extend(["", f"Project ID: {request.project_id}"])
    lines.extend(["", "Firestore Rules:", "```", request.rules, "```"])
    if include_examples:
        lines.extend(["", "Reference examples of insecure and secure rules:", REFERENCE_EXAMPLES.strip()])
    lines.extend(["", STRUCTURED_ANSWER if mode == STRUCTURED_MODE else TEXT_ANSWER])
    return "\n".join(lines) + "\n"


def validate_audit_result(payload: Union[str, bytes, Dict[str, Any], None]) -> AuditResult:
    """Validates a model response against the AuditResult shape; no repair is attempted."""
    if payload is None or (isinstance(payload, (str, bytes)) and not payload.strip()):
        raise AnalysisError("Failed to generate a valid audit result")
    try:
        if isinstance(payload, (str, bytes)):
            return AuditResult.model_validate_json(payload)
        return AuditResult.model_validate(payload)
    except ValidationError as e:
        raise AnalysisError(f"Audit result failed validation ({e.error_count()} error(s)): {e}") from e


def _api_error_message(resp: httpx.Response) -> str:
    try:
        return resp.json().get("error", {}).get("message", resp.text)
    except (ValueError, AttributeError):
        return resp.text


class GeminiAnalyzer:
    """Analysis backend calling the Gemini generateContent endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        timeout: float = ANALYSIS_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        log=logger,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport
        self.log = log

    async def analyze(self, prompt: str, schema: Optional[Dict[str, Any]] = None) -> str:
        """
        Sends `prompt` to the model and returns its text output.

        When `schema` is given the model is asked for JSON matching it.
        """
        url = f"{GEMINI_BASE_URL}/models/{self.model}:generateContent"
        payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if schema is not None:
            payload["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": schema,
            }
        headers = {"x-goog-api-key": self.api_key}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(url, headers=headers, json=payload)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            message = _api_error_message(e.response)
            raise AnalysisError(f"Failed to audit rules: {e.response.status_code} - {message}") from e
        except (httpx.RequestError, ValueError) as e:
            raise AnalysisError(f"Failed to audit rules: {e}") from e

        return self._candidate_text(data)

    def _candidate_text(self, data: Any) -> str:
        if not isinstance(data, dict):
            raise AnalysisError("Failed to audit rules: unexpected response from model")
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise AnalysisError(f"Failed to audit rules: prompt blocked ({block_reason})")
        candidates = data.get("candidates") or []
        if not candidates:
            raise AnalysisError("Failed to audit rules: model returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        self.log.debug(f"Model finished with reason {candidates[0].get('finishReason')}")
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


class RulesAuditor:
    """Sends rules to an analysis backend and returns a validated result."""

    def __init__(self, analyzer, *, include_examples: bool = False, log=logger):
        self.analyzer = analyzer
        self.include_examples = include_examples
        self.log = log

    async def audit(
        self,
        document: RuleDocument,
        project_id: Optional[str] = None,
        mode: str = STRUCTURED_MODE,
    ) -> Union[AuditResult, str]:
        request = AuditRequest(rules=document.text, project_id=project_id)
        prompt = build_prompt(request, mode, include_examples=self.include_examples)

        if mode == TEXT_MODE:
            self.log.info("Starting simplified security rules audit")
            self.log.debug("Sending rules to AI for simplified analysis")
            text = await self.analyzer.analyze(prompt)
            if not text or not text.strip():
                raise AnalysisError("Failed to audit rules: model returned no text")
            self.log.info("Simplified audit completed successfully")
            return text

        self.log.info("Starting security rules audit")
        self.log.debug("Sending rules to AI for analysis")
        raw = await self.analyzer.analyze(prompt, RESPONSE_SCHEMA)
        result = validate_audit_result(raw)
        self.log.info(f"Audit completed with overall rating: {result.overall_rating}/10")
        self.log.debug(f"Found {len(result.vulnerabilities)} vulnerabilities")
        return result


# --- Report Rendering ---

SEVERITY_STYLES = {
    "critical": "bold white on red",
    "high": "red",
    "medium": "yellow",
    "low": "blue",
}


def rating_bar(rating: int, width: int = BAR_WIDTH, filled: str = "█", empty: str = "░") -> str:
    """Returns a `width`-long bar with round(rating / 10 * width) filled segments."""
    count = max(0, min(width, round(rating / 10 * width)))
    return filled * count + empty * (width - count)


def _report_lines(result: Union[AuditResult, str], styled: bool) -> List[str]:
    def mark(text: str, style: str) -> str:
        return f"[{style}]{escape(text)}[/]" if styled else text

    def plain(text: str) -> str:
        return escape(text) if styled else text

    lines = [mark(REPORT_TITLE, "bold"), ""]
    if isinstance(result, str):
        lines.append(plain(result.rstrip("\n")))
        return lines

    bar = rating_bar(result.overall_rating)
    filled = bar.count("█")
    bar_text = mark(bar[:filled], "green") + mark(bar[filled:], "bright_black") if styled else bar
    lines.extend([f"Security Rating: {mark(f'{result.overall_rating}/10', 'bold')}   {bar_text}", ""])

    n = len(result.vulnerabilities)
    if n:
        lines.extend([mark(f"✖ {n} Vulnerabilit{'ies' if n > 1 else 'y'}", "bold red"), ""])
        for v in result.vulnerabilities:
            label = mark(f" {v.severity.upper()} ", SEVERITY_STYLES[v.severity])
            lines.append(f"{label}  {mark(v.description, 'bold')}")
            lines.append(f"  Recommendation: {plain(v.recommendation)}")
            if v.location:
                lines.append(f"  Location: {mark(v.location, 'italic')}")
            lines.append("")
    else:
        lines.extend([mark("✔ No vulnerabilities found!", "green"), ""])

    if result.best_practices:
        lines.extend([mark("Best Practices:", "bold"), ""])
        lines.extend(f"  {i}. {plain(bp)}" for i, bp in enumerate(result.best_practices, 1))
        lines.append("")

    lines.extend([mark("Summary:", "bold"), "", plain(result.summary)])
    return lines


def format_report(result: Union[AuditResult, str]) -> str:
    """Plain-text report with the same content as the console render."""
    return "\n".join(_report_lines(result, styled=False)) + "\n"


class ReportPresenter:
    """Renders audit results to the console and writes report files."""

    def __init__(self, console: Optional[Console] = None, log=logger):
        self.console = console or Console()
        self.log = log

    def render(self, result: Union[AuditResult, str]) -> None:
        for line in _report_lines(result, styled=True):
            self.console.print(line, highlight=False, emoji=False, soft_wrap=True)

    def persist(self, result: Union[AuditResult, str], path: Union[str, Path]) -> Path:
        """Writes the report to `path` (JSON when it ends in .json), creating parent dirs."""
        path = Path(path)
        if isinstance(result, str):
            content = result if result.endswith("\n") else result + "\n"
        elif path.suffix.lower() == ".json":
            content = json.dumps(result.model_dump(by_alias=True), indent=2) + "\n"
        else:
            content = format_report(result)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise InternalError(f"Failed to write report to {path}: {e}") from e
        self.log.debug(f"Wrote {len(content)} characters to {path}")
        return path


# --- CLI Command Handler ---

def run_audit(args: argparse.Namespace, log=logger) -> None:
    """Resolves, audits and reports; exits with status 1 on any stage failure."""
    log.info("Starting Firestore security rules audit...")

    if not args.project:
        log.error("Project ID is required. Use --project or -p option.")
        sys.exit(1)

    if args.verbose:
        log.debug("Verbose mode enabled")
        shown = {k: ("***" if k == "api_key" and v else v) for k, v in vars(args).items()}
        log.debug(f"CLI options: {shown}")

    api_key = args.api_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    if not api_key:
        log.error("Error: API Key is required. Use --api-key or set GEMINI_API_KEY.")
        sys.exit(1)

    if not args.rules_file:
        log.info("No rules file provided, will attempt to fetch rules from project")
    resolver = RuleResolver(
        args.project,
        args.rules_file,
        firebase_bin=args.firebase_bin,
        service_account=args.service_account,
        log=log,
    )
    try:
        document = resolver.resolve()
    except NotFoundError as e:
        log.error(str(e))
        sys.exit(1)
    except InternalError as e:
        log.opt(exception=e).error(f"Failed to fetch rules from project: {e}")
        sys.exit(1)
    log.debug(f"Rules origin: {document.origin}")

    mode = TEXT_MODE if args.text else STRUCTURED_MODE
    analyzer = GeminiAnalyzer(api_key, model=args.model, log=log)
    auditor = RulesAuditor(analyzer, include_examples=args.examples, log=log)
    try:
        result = asyncio.run(auditor.audit(document, args.project, mode))
    except AnalysisError as e:
        log.opt(exception=e).error(f"Audit failed: {e}")
        sys.exit(1)

    presenter = ReportPresenter(log=log)
    if args.output:
        try:
            written = presenter.persist(result, args.output)
        except InternalError as e:
            log.opt(exception=e).error(str(e))
            sys.exit(1)
        log.success(f"Report written to {written}")

    presenter.render(result)
    log.success("Audit completed successfully!")


# --- CLI Setup ---
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fsaudit",
        description="fsaudit CLI – audit Firestore security rules with an LLM",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("-p", "--project", help="Firebase project ID")
    parser.add_argument("-r", "--rules-file", type=Path,
                        help="Path to a Firestore security rules file (skips CLI/API fetching)")
    parser.add_argument("-o", "--output", type=Path,
                        help="Write the report to this file (JSON when it ends in .json)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("--log-level", choices=list(LOG_LEVELS),
                        help="Set the logging level (default: LOG_LEVEL env var or info)")
    parser.add_argument("--log-file", type=Path, help="Enable file logging and specify log file path")
    parser.add_argument("--text", action="store_true",
                        help="Ask for a free-form text analysis instead of a structured report")
    parser.add_argument("--examples", action="store_true",
                        help="Include reference insecure/secure rule examples in the prompt")
    parser.add_argument("--model", default=os.getenv("FSAUDIT_MODEL", DEFAULT_MODEL),
                        help=f"Gemini model name (or use FSAUDIT_MODEL env var, default: {DEFAULT_MODEL})")
    parser.add_argument("--api-key", help="Gemini API key (or use GEMINI_API_KEY / GOOGLE_API_KEY env vars)")
    parser.add_argument("--service-account", type=Path,
                        help="Service account JSON for the Rules API (default: application default credentials)")
    parser.add_argument("--firebase-bin", default="firebase", help="Firebase CLI executable (default: firebase)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    # existing environment wins over .env
    load_dotenv(find_dotenv(usecwd=True), override=False)

    args = build_parser().parse_args(argv)
    print_banner()

    log = init_logger(LoggerConfig(
        level=resolve_log_level(args.log_level),
        enable_file=bool(args.log_file),
        log_file=args.log_file,
        verbose=args.verbose,
    ))
    try:
        run_audit(args, log)
    except Exception as e:
        log.opt(exception=e).critical(f"Unexpected error during audit execution: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
