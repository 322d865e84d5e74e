# main.py
"""CLI entry point for the narrative generation pipeline."""

from __future__ import annotations

import argparse
import sys

from orchestration.cli_runner import run


def main() -> None:
    """Parse command-line arguments and start a run."""
    parser = argparse.ArgumentParser(
        description="Grow a long-form narrative from a few thematic keywords."
    )
    parser.add_argument("--keywords", default=None, help="Thematic keywords")
    parser.add_argument(
        "--chapters", type=int, default=None, help="Target number of chapters"
    )
    parser.add_argument("--model", default=None, help="Generation model name")
    parser.add_argument(
        "--provider", choices=["gemini", "openai"], default=None, help="LLM provider"
    )
    parser.add_argument(
        "--context-mode",
        choices=["summary", "full"],
        default=None,
        help="Embed the running summary or the full book in paragraph prompts",
    )
    parser.add_argument("--output-dir", default=None, help="Artifact directory")
    args = parser.parse_args()

    exit_code = run(
        {
            "KEYWORDS": args.keywords,
            "CHAPTER_COUNT": args.chapters,
            "GENERATION_MODEL": args.model,
            "LLM_PROVIDER": args.provider,
            "BODY_CONTEXT_MODE": args.context_mode,
            "BASE_OUTPUT_DIR": args.output_dir,
        }
    )
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
