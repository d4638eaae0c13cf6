"""Minimal demonstration of a streamed chat session."""

import sys

from gemini_core import ChatSession

if __name__ == "__main__":
    session = ChatSession()
    if len(sys.argv) > 1:
        session.attach_file(sys.argv[1])
    question = "请用三句话概括附件（如果有）或介绍一下你自己"
    print("User:", question)
    print("Model: ", end="")
    result = session.submit(question)
    print()
    if not result.ok:
        print(f"[{result.kind}] {result.message}", file=sys.stderr)
        sys.exit(1)
