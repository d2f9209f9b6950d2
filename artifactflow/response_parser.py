# artifactflow/response_parser.py
from dataclasses import dataclass
from typing import Dict


@dataclass
class ParsedResponse:
    raw_response: str
    artifact_content: str = ""
    commentary: str = ""


def _between(text: str, start_tag: str, end_tag: str) -> tuple[int, int]:
    """(start, end) of the outermost tagged span, or (-1, -1)."""
    start = text.find(start_tag)
    end = text.rfind(end_tag)
    if start == -1 or end == -1 or end <= start:
        return -1, -1
    return start, end


def extract_content_and_commentary(response: str, artifact_format: Dict[str, str]) -> ParsedResponse:
    """
    Split a raw model reply into artifact content and commentary.

    Without commentary tags, the text around the artifact block is the
    commentary; without either kind of tag the whole reply is commentary.
    """
    response = response or ""
    result = ParsedResponse(raw_response=response)

    start_tag = artifact_format["start_tag"]
    end_tag = artifact_format["end_tag"]
    start, end = _between(response, start_tag, end_tag)
    if start != -1:
        result.artifact_content = response[start + len(start_tag):end].strip()

    c_start_tag = artifact_format.get("commentary_start_tag")
    c_end_tag = artifact_format.get("commentary_end_tag")
    if not (c_start_tag and c_end_tag):
        return result

    c_start, c_end = _between(response, c_start_tag, c_end_tag)
    if c_start != -1:
        result.commentary = response[c_start + len(c_start_tag):c_end].strip()
    elif start != -1:
        before = response[:start].strip()
        after = response[end + len(end_tag):].strip()
        result.commentary = "\n\n".join(part for part in (before, after) if part)
    else:
        result.commentary = response.strip()

    return result


def has_valid_artifact_content(response: str, artifact_format: Dict[str, str]) -> bool:
    start, _ = _between(response or "", artifact_format["start_tag"], artifact_format["end_tag"])
    return start != -1


def validate_and_format_response(parsed: ParsedResponse, is_update: bool) -> ParsedResponse:
    if is_update and not (parsed.artifact_content or "").strip():
        raise ValueError("Update response must contain artifact content")
    return ParsedResponse(
        raw_response=parsed.raw_response,
        artifact_content=parsed.artifact_content or "",
        commentary=parsed.commentary or "",
    )
