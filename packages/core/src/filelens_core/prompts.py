"""Prompt text for full, incremental and conversational model calls.

Pure text assembly: no validation, no I/O. The JSON contract described here
is the one ``filelens_core.parser`` expects back.
"""

from __future__ import annotations

from typing import Sequence

from filelens_core.models import CATEGORIES, SEVERITIES

_SCHEMA_EXAMPLE = """{
  "issues": [
    {
      "line": 10,
      "severity": "high",
      "category": "security",
      "title": "SQL injection vulnerability",
      "description": "User input is concatenated into the SQL query without sanitization",
      "suggestion": "Use parameterized queries",
      "fixedCode": "cursor.execute(\\"SELECT * FROM users WHERE id = %s\\", (user_id,))",
      "reasoning": "String concatenation lets an attacker inject arbitrary SQL"
    }
  ]
}"""


def _vocabulary(values: Sequence[str]) -> str:
    return ", ".join(f'"{v}"' for v in values)


def _format_rules() -> str:
    return f"""IMPORTANT RULES:
- Respond ONLY with the JSON object, nothing else
- Do NOT wrap the JSON in markdown code blocks
- Do NOT add text before or after the JSON
- Escape quotes inside strings and keep every string on a single line
- All string values must be in double quotes
- "line" must be an integer line number of the file
- "severity" must be one of: {_vocabulary(SEVERITIES)}
- "category" must be one of: {_vocabulary(CATEGORIES)}
- "fixedCode" is optional
- If there are no issues, respond with: {{"issues": []}}"""


def _rules_section(custom_rules: str | None, guideline_rules: str | None = None) -> str:
    parts = []
    if custom_rules:
        parts.append(f"CUSTOM RULES TO ENFORCE:\n{custom_rules}\n")
    if guideline_rules:
        parts.append(guideline_rules if guideline_rules.endswith("\n") else guideline_rules + "\n")
    return "\n".join(parts)


def build_full_prompt(
    code: str,
    language: str,
    filename: str,
    custom_rules: str | None = None,
    guideline_rules: str | None = None,
) -> str:
    """Prompt for reviewing the whole file."""
    rules = _rules_section(custom_rules, guideline_rules)
    return f"""You are an expert code reviewer. Analyze the following {language} code and identify issues.

CRITICAL: You MUST respond with ONLY valid JSON. No markdown, no code blocks, no explanations before or after the JSON. Start directly with {{ and end with }}.

Required JSON format (respond EXACTLY like this):
{_SCHEMA_EXAMPLE}

{_format_rules()}

FILE: {filename}
LANGUAGE: {language}
{rules}
CODE TO ANALYZE:
{code}

Focus on:
1. Security vulnerabilities (injection, XSS, authentication and authorization flaws)
2. Logic bugs and potential runtime errors
3. Performance bottlenecks
4. Code style and best practices
5. Missing error handling

Provide actionable, specific feedback with line numbers. Be concise but thorough.

NOW RESPOND WITH ONLY THE JSON OBJECT (no other text):"""


def build_incremental_prompt(
    code: str,
    language: str,
    filename: str,
    changed_lines: Sequence[int],
    diff_snippet: str,
    custom_rules: str | None = None,
    deleted_lines: Sequence[int] = (),
) -> str:
    """Prompt for reviewing only the changed neighbourhoods of a new revision.

    ``code`` is the full new revision; only ``diff_snippet`` is embedded so
    the prompt stays bounded by the size of the change.
    """
    changed = ", ".join(str(n) for n in changed_lines) or "none"
    snippet = diff_snippet or "(no added or modified lines, only deletions)"
    deleted = ""
    if deleted_lines:
        deleted = f"DELETED LINES (previous revision): {', '.join(str(n) for n in deleted_lines)}\n"
    rules = _rules_section(custom_rules)
    total_lines = len(code.split("\n"))
    return f"""You are an expert code reviewer. Perform an INCREMENTAL REVIEW of recently changed code.

CRITICAL: You MUST respond with ONLY valid JSON. No markdown, no code blocks, no explanations before or after the JSON.

Required JSON format:
{_SCHEMA_EXAMPLE}

{_format_rules()}

FILE: {filename}
LANGUAGE: {language}
TOTAL LINES: {total_lines}
CHANGED LINES: {changed}
{deleted}
FOCUS: Review ONLY the following changed lines (marked with "+") and their immediate context.
Each line is shown as "<line number>: <code>"; report issues using those line numbers.

{snippet}

{rules}
Review criteria:
1. NEW security vulnerabilities in the changed code
2. NEW logic bugs introduced by the changes
3. Performance impact of the new code
4. Style consistency with the surrounding code
5. Missing error handling in the new code
6. Breaking changes or regressions

Do not report problems in unchanged context lines unless the change causes them.

NOW RESPOND WITH ONLY THE JSON OBJECT (no other text):"""


def build_reply_prompt(user_comment: str, issue: dict, code_context: str, language: str) -> str:
    """Prompt for a short plain-text answer to a user's comment on an issue."""
    return f"""You are an AI code review assistant helping a developer.

CONTEXT:
- Language: {language}
- Issue: {issue.get("title", "")} ({issue.get("severity", "info")})
- Problem at line {issue.get("line", "?")}: {issue.get("description", "")}

CODE CONTEXT:
```{language}
{code_context}
```

USER COMMENT:
"{user_comment}"

TASK:
Respond to the user's comment in a helpful, concise way (2-3 sentences max).
- If they ask for clarification, explain the issue better
- If they ask for alternative solutions, provide them
- If they disagree, respectfully explain your reasoning

IMPORTANT: Respond ONLY with plain text (no JSON, no markdown formatting)."""
