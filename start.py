#!/usr/bin/env python3
"""GrantKit startup script.

Checks args/llm_config.yaml before serving, so a missing API key shows up
at startup instead of as a failed generation:
  1. every routing chain points at defined models and providers
  2. each function has at least one model whose provider credentials exist
  3. section_generation and checklist_evaluation are routed

Usage:
  python start.py                   # validate + start the API
  python start.py --port 5002       # override port
  python start.py --validate-only   # check without starting Flask
"""

import argparse
import os
import sys
from pathlib import Path

import yaml

# Windows cp1252 console can't render Unicode
if hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")

BASE_DIR = Path(__file__).resolve().parent
LLM_CONFIG_PATH = Path(os.environ.get(
    "GRANTKIT_LLM_CONFIG", str(BASE_DIR / "args" / "llm_config.yaml")
))

REQUIRED_FUNCTIONS = ("section_generation", "checklist_evaluation")

GREEN = "\033[32m"
RED   = "\033[31m"
YELLOW = "\033[33m"
CYAN  = "\033[36m"
RESET = "\033[0m"
BOLD  = "\033[1m"


def _ok(msg):   print(f"{GREEN}  ✓{RESET} {msg}")
def _warn(msg): print(f"{YELLOW}  ⚠{RESET} {msg}")
def _err(msg):  print(f"{RED}  ✗{RESET} {msg}")
def _info(msg): print(f"{CYAN}  →{RESET} {msg}")


# ── LLM Config Validation ─────────────────────────────────────────────────────

def load_llm_config(path: Path = LLM_CONFIG_PATH) -> dict:
    if not path.exists():
        _warn(f"LLM config not found at {path}")
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _has_credentials(provider_cfg: dict, env) -> bool:
    key_env = provider_cfg.get("api_key_env")
    if key_env:
        return bool(env.get(key_env, "").strip())
    # ollama / bedrock: no key in config, reachability is checked at call time
    return True


def validate_llm_config(config: dict, env=None) -> list[tuple[str, str]]:
    """Check routing against models, providers and credentials.

    Returns a list of (level, message) tuples; level is "error" or "warn".
    """
    env = os.environ if env is None else env
    issues = []
    providers = config.get("providers", {}) or {}
    models = config.get("models", {}) or {}
    routing = config.get("routing", {}) or {}

    for name in REQUIRED_FUNCTIONS:
        if name not in routing and "default" not in routing:
            issues.append(("error", f"No routing chain for '{name}' and no default"))

    for model_name, model_cfg in models.items():
        if model_cfg.get("provider") not in providers:
            issues.append(("error", f"Model '{model_name}' uses undefined provider "
                                    f"'{model_cfg.get('provider')}'"))

    for function, route in routing.items():
        chain = (route or {}).get("chain", [])
        usable = []
        for model_name in chain:
            model_cfg = models.get(model_name)
            if model_cfg is None:
                issues.append(("error", f"Chain '{function}' references undefined model "
                                        f"'{model_name}'"))
                continue
            provider_cfg = providers.get(model_cfg.get("provider"), {})
            if _has_credentials(provider_cfg, env):
                usable.append(model_name)
            else:
                issues.append(("warn", f"Model '{model_name}' in '{function}' skipped: "
                                       f"{provider_cfg.get('api_key_env')} not set"))
        if chain and not usable:
            issues.append(("error", f"Chain '{function}' has no model with credentials"))

    return issues


# ── Main ───────────────────────────────────────────────────────────────────────

def run(args):
    print(f"\n{BOLD}GrantKit Startup{RESET}  (port {args.port})\n")

    print(f"{BOLD}[1/2] LLM config validation{RESET}")
    config = load_llm_config()
    issues = validate_llm_config(config) if config else [("error", "Empty LLM config")]
    errors = [msg for level, msg in issues if level == "error"]
    for level, msg in issues:
        (_err if level == "error" else _warn)(msg)
    if not issues:
        _ok("llm_config.yaml routing and credentials valid")
    elif not errors:
        _ok("Every function has at least one usable model")

    if args.validate_only:
        print(f"\n{BOLD}Validation complete.{RESET} (--validate-only, not starting Flask)\n")
        return 1 if errors else 0

    if errors:
        _warn("Starting anyway; generation and checklist calls will fail until fixed")

    print(f"\n{BOLD}[2/2] Starting Flask{RESET}")
    from grantkit.dashboard.app import main as serve
    _info(f"GrantKit API → http://{args.host}:{args.port}")
    serve(["--port", str(args.port), "--host", args.host] + (["--debug"] if args.debug else []))
    return 0


def main():
    parser = argparse.ArgumentParser(description="GrantKit startup")
    parser.add_argument("--port", type=int, default=int(os.environ.get("FLASK_PORT", 5001)))
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--validate-only", action="store_true",
                        help="Validate llm_config.yaml and exit without starting Flask")
    args = parser.parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    main()
