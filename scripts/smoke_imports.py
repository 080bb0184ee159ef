from agentic_rag.chunking import chunk_text
from agentic_rag.retrieval import fuse_scores, tokenize
from agentic_rag.tools import evaluate_expression, extract_arithmetic_expression


if __name__ == "__main__":
    chunks = chunk_text(
        "Paris is the capital of France. Rome is the capital of Italy. Berlin is the capital of Germany.",
        "capitals.txt",
    )
    expr = extract_arithmetic_expression("What is 17 * 3 + 2?")
    print(
        {
            "chunks": [chunk.id for chunk in chunks],
            "tokens": tokenize("What is the capital of France?"),
            "expr": expr,
            "value": evaluate_expression(expr) if expr else None,
            "fused": [round(score, 3) for score in fuse_scores([3.0, 1.0, 0.0], [0.2, 0.9, 0.5])],
        }
    )
