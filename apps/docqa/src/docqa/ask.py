from __future__ import annotations

import argparse
import sys
from uuid import uuid4

from docqa.container import build_services
from docqa.services.rag.types import Answer


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docqa-ask",
        description="Answer a question from the ingested documents",
    )
    parser.add_argument("question", help="Question to answer")
    parser.add_argument(
        "--conversation-id",
        default=None,
        help="Conversation to attach the exchange to (a new one by default)",
    )
    parser.add_argument("--document-id", default=None, help="Restrict retrieval to one document")
    parser.add_argument("--k", type=int, default=None, help="Number of fragments to retrieve")
    return parser


def format_answer(answer: Answer) -> str:
    lines = [answer.text, "", f"model: {answer.model}" + (" (fallback)" if answer.used_fallback else "")]
    if not answer.source_fragments:
        lines.append("sources: none")
        return "\n".join(lines)

    lines.append("sources:")
    for number, fragment in enumerate(answer.source_fragments, 1):
        pages = ",".join(str(page) for page in fragment.page_numbers) or "-"
        lines.append(
            f"  [{number}] {fragment.document_name} fragment={fragment.chunk_index} "
            f"pages={pages} score={fragment.score:.4f}"
        )
    return "\n".join(lines)


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    services = build_services()
    try:
        answer = services.assembler.answer(
            args.conversation_id or uuid4().hex,
            args.question,
            document_id=args.document_id,
            top_k=args.k,
        )
    except Exception as exc:
        print(f"[docqa-ask] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc
    finally:
        services.close()

    print(format_answer(answer), flush=True)


if __name__ == "__main__":
    main()
