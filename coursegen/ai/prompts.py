"""Prompt builders and response schemas used by the stage handlers."""

from __future__ import annotations

import json
from typing import Any

JsonDict = dict[str, Any]

_LANGUAGE_NAMES = {"ru": "Russian", "en": "English", "de": "German", "es": "Spanish"}

ANALYSIS_SCHEMA: JsonDict = {
  "type": "object",
  "properties": {
    "topic": {"type": "string"},
    "audience": {"type": "string"},
    "difficulty": {"type": "string", "enum": ["beginner", "intermediate", "advanced"]},
    "keyConcepts": {"type": "array", "items": {"type": "string"}},
    "recommendedSections": {"type": "integer"},
  },
  "required": ["topic", "audience", "difficulty", "keyConcepts", "recommendedSections"],
  "additionalProperties": False,
}

STRUCTURE_SCHEMA: JsonDict = {
  "type": "object",
  "properties": {
    "title": {"type": "string"},
    "sections": {
      "type": "array",
      "items": {
        "type": "object",
        "properties": {
          "title": {"type": "string"},
          "lessons": {
            "type": "array",
            "items": {
              "type": "object",
              "properties": {"title": {"type": "string"}, "objective": {"type": "string"}},
              "required": ["title", "objective"],
              "additionalProperties": False,
            },
          },
        },
        "required": ["title", "lessons"],
        "additionalProperties": False,
      },
    },
  },
  "required": ["title", "sections"],
  "additionalProperties": False,
}


def _language_name(language: str | None) -> str:
  code = (language or "en").strip().lower()[:2]
  return _LANGUAGE_NAMES.get(code, code)


def _stringify(value: Any) -> str:
  """Serialize context deterministically so prompts are reproducible."""
  if not value:
    return "{}"
  return json.dumps(value, ensure_ascii=False, sort_keys=True)


def render_summary_prompt(text: str, *, token_budget: int, language: str | None, strict: bool = False) -> str:
  """Ask for a faithful summary that fits within a token budget."""
  # Strict mode is the retry strategy after a summary drifted from its source.
  fidelity = "Reuse the source's own terminology and sentence order; do not paraphrase or generalize.\n" if strict else ""
  return (
    f"Summarize the following source document in {_language_name(language)}.\n"
    f"Keep every key fact, definition and example needed to teach from it.\n"
    f"{fidelity}"
    f"The summary must stay under roughly {token_budget} tokens.\n\n"
    f"SOURCE:\n{text}"
  )


def render_analysis_prompt(*, title: str | None, settings: JsonDict | None, documents: list[JsonDict], language: str | None) -> str:
  """Describe the course request and source material for the analysis call."""
  sources = "\n\n".join(f"[{doc['fileId']}] ({doc['mode']})\n{doc['text']}" for doc in documents) or "No source documents were provided."
  return (
    f"You are planning an educational course written in {_language_name(language)}.\n"
    f"Course title: {title or 'untitled'}\n"
    f"Course settings: {_stringify(settings)}\n\n"
    f"Analyze the topic and source material below. Identify the audience, difficulty,\n"
    f"key concepts and how many sections the course needs.\n\n"
    f"SOURCES:\n{sources}"
  )


def render_structure_prompt(*, title: str | None, analysis: JsonDict | None, preferences: JsonDict | None, language: str | None) -> str:
  """Ask for the section and lesson outline."""
  preferences = preferences or {}
  sections = preferences.get("sectionsCount")
  lessons = preferences.get("lessonsPerSection")
  constraints = []
  if sections:
    constraints.append(f"Use exactly {sections} sections.")
  if lessons:
    constraints.append(f"Use exactly {lessons} lessons per section.")
  return (
    f"Design the structure of a course in {_language_name(language)}.\n"
    f"Course title: {title or 'untitled'}\n"
    f"Analysis: {_stringify(analysis)}\n"
    f"{' '.join(constraints)}\n"
    f"Every lesson needs a title and a one-sentence learning objective."
  )


def render_lesson_prompt(*, label: str, lesson: JsonDict, section_title: str, course_title: str | None, language: str | None) -> str:
  """Ask for the markdown body of one lesson."""
  return (
    f"Write lesson {label} of the course '{course_title or 'untitled'}' in {_language_name(language)}.\n"
    f"Section: {section_title}\n"
    f"Lesson title: {lesson.get('title', '')}\n"
    f"Learning objective: {lesson.get('objective', '')}\n\n"
    f"Return the lesson as markdown with an introduction, explanation, one worked example and a short recap."
  )
