"""Prompt templates for grounded answers and exam generation."""

from __future__ import annotations

from typing import Dict, List

QA_SYSTEM_PROMPT = """You are a study assistant answering a student's question from their own study materials.

Rules:
1) Use only the numbered evidence below. Never invent facts, names or numbers.
2) Cite every evidence item you use as [Source: <citation>].
3) If the evidence only partly answers the question, say which part is missing.
4) Be clear and educational; give a short example when it helps understanding."""


def build_qa_prompt(query: str, evidence: List[Dict]) -> str:
    context = "\n".join(
        f"[{idx}] Source: {item.get('citation', 'Unknown')}\n{item.get('content', '')}\n"
        for idx, item in enumerate(evidence, start=1)
    )
    return (
        f"{QA_SYSTEM_PROMPT}\n\n"
        f"Student's Question: {query}\n\n"
        f"Evidence from the student's materials:\n{context}\n"
        "Answer the question using the evidence above and cite it."
    )


def build_exam_prompt(subject: str, count: int, material: List[str], excerpt_chars: int = 500) -> str:
    numbered = "\n".join(f"{i}. {text[:excerpt_chars]}" for i, text in enumerate(material, start=1))
    return f"""
Create {count} multiple choice questions for {subject or 'this subject'} based only on this material.

Rules:
1) Every question has exactly 4 options.
2) "answer" is one letter: A, B, C or D.
3) Output a STRICT JSON array only, no markdown and no extra commentary.

Return exactly:
[
  {{
    "id": "q1",
    "question": "...",
    "options": ["...", "...", "...", "..."],
    "answer": "A",
    "explanation": "..."
  }}
]

Material:
{numbered}
"""
