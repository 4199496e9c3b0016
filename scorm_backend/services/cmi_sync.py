"""
CMI data model synchronisation.

Content writes raw CMI values (``cmi.core.lesson_status``,
``cmi.score.raw`` ...) through the in-page runtime; on commit the server
folds them into the summary columns of the runtime record used by
gradebook and progress views. Time values use the SCORM 1.2 CMITimespan
(``HHHH:MM:SS.SS``) or the SCORM 2004 ISO-8601 duration format.
"""

import logging
import re
from typing import Dict, Mapping, Optional, Union

from ..models.persisted_scorm import now_ms
from ..models.scorm import SCORMRuntimeData

logger = logging.getLogger(__name__)

# Summary field -> CMI element, per SCORM revision
SCORM12_ELEMENTS = {
    "status": "cmi.core.lesson_status",
    "scoreRaw": "cmi.core.score.raw",
    "scoreMin": "cmi.core.score.min",
    "scoreMax": "cmi.core.score.max",
    "suspendData": "cmi.suspend_data",
    "location": "cmi.core.lesson_location",
    "sessionTime": "cmi.core.session_time",
    "totalTime": "cmi.core.total_time",
}

SCORM2004_ELEMENTS = {
    "completionStatus": "cmi.completion_status",
    "successStatus": "cmi.success_status",
    "scoreScaled": "cmi.score.scaled",
    "scoreRaw": "cmi.score.raw",
    "scoreMin": "cmi.score.min",
    "scoreMax": "cmi.score.max",
    "suspendData": "cmi.suspend_data",
    "location": "cmi.location",
    "sessionTime": "cmi.session_time",
    "totalTime": "cmi.total_time",
}

# cmi.core.lesson_status -> (completionStatus, successStatus or None to keep)
SCORM12_LESSON_STATUS = {
    "passed": ("completed", "passed"),
    "completed": ("completed", "passed"),
    "failed": ("completed", "failed"),
    "incomplete": ("incomplete", None),
    "browsed": ("incomplete", None),
    "not attempted": ("not attempted", None),
}

SCORM2004_COMPLETION = {"completed", "incomplete", "not attempted"}
SCORM2004_SUCCESS = {"passed", "failed"}

_CMI_TIMESPAN = re.compile(r"^(\d{2,4}):([0-5]\d):([0-5]\d)(\.\d{1,2})?$")
_ISO_DURATION = re.compile(
    r"^P(?:(?P<years>\d+(?:\.\d+)?)Y)?(?:(?P<months>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)
_DURATION_MS = {
    "years": 365 * 24 * 3600 * 1000,
    "months": 30 * 24 * 3600 * 1000,
    "days": 24 * 3600 * 1000,
    "hours": 3600 * 1000,
    "minutes": 60 * 1000,
    "seconds": 1000,
}


def parse_cmi_timespan(value: str) -> Optional[int]:
    """SCORM 1.2 ``HHHH:MM:SS.SS`` to milliseconds, None when malformed."""
    match = _CMI_TIMESPAN.match((value or "").strip())
    if not match:
        return None
    hours, minutes, seconds, fraction = match.groups()
    total = (int(hours) * 3600 + int(minutes) * 60 + int(seconds)) * 1000
    if fraction:
        total += round(float(fraction) * 1000)
    return total


def parse_iso8601_duration(value: str) -> Optional[int]:
    """SCORM 2004 ``PnYnMnDTnHnMnS`` to milliseconds, None when malformed."""
    text = (value or "").strip()
    match = _ISO_DURATION.match(text)
    if not match or text in ("P", "PT") or text.endswith("T"):
        return None
    return round(
        sum(
            float(amount) * _DURATION_MS[unit]
            for unit, amount in match.groupdict().items()
            if amount
        )
    )


def format_cmi_timespan(ms: int) -> str:
    hours, remainder = divmod(max(ms, 0), 3600 * 1000)
    minutes, remainder = divmod(remainder, 60 * 1000)
    return f"{min(hours, 9999):04d}:{minutes:02d}:{remainder / 1000:05.2f}"


def format_iso8601_duration(ms: int) -> str:
    hours, remainder = divmod(max(ms, 0), 3600 * 1000)
    minutes, remainder = divmod(remainder, 60 * 1000)
    seconds = remainder / 1000
    parts = []
    if hours:
        parts.append(f"{hours}H")
    if minutes:
        parts.append(f"{minutes}M")
    if seconds or not parts:
        parts.append(f"{seconds:g}S")
    return "PT" + "".join(parts)


def _score(value: Optional[str]) -> Optional[float]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric CMI score {value!r}")
        return None


def _sync_scorm12(cmi: Mapping[str, str], update: Dict) -> None:
    status = cmi.get(SCORM12_ELEMENTS["status"])
    if status in SCORM12_LESSON_STATUS:
        completion, success = SCORM12_LESSON_STATUS[status]
        update["completionStatus"] = completion
        if success:
            update["successStatus"] = success


def _sync_scorm2004(cmi: Mapping[str, str], update: Dict) -> None:
    completion = cmi.get(SCORM2004_ELEMENTS["completionStatus"])
    if completion in SCORM2004_COMPLETION:
        update["completionStatus"] = completion
    success = cmi.get(SCORM2004_ELEMENTS["successStatus"])
    if success in SCORM2004_SUCCESS:
        update["successStatus"] = success


def apply_cmi_commit(
    record: SCORMRuntimeData,
    cmi_values: Mapping[str, Union[str, int, float]],
    session_time_ms: Optional[int] = None,
    finish: bool = False,
    now: Optional[int] = None,
) -> SCORMRuntimeData:
    """
    Merge committed CMI values into a runtime record.

    Args:
        record: Current full runtime record
        cmi_values: CMI elements written since the last commit
        session_time_ms: Session length measured by the caller; when None it
            is read from the revision's session_time element
        finish: The session ended (LMSFinish/Terminate); the session time,
            from this commit or else the last one recorded, is added to the
            accumulated total
        now: Timestamp override (epoch ms)

    Returns:
        New SCORMRuntimeData; the input record is not modified
    """
    elements = SCORM2004_ELEMENTS if record.version == "2004" else SCORM12_ELEMENTS
    cmi = dict(record.cmiData)
    cmi.update({key: str(value) for key, value in cmi_values.items()})
    update: Dict = {}

    if record.version == "2004":
        _sync_scorm2004(cmi, update)
    else:
        _sync_scorm12(cmi, update)

    for field in ("scoreRaw", "scoreMin", "scoreMax", "scoreScaled"):
        element = elements.get(field)
        if element is None:
            continue
        score = _score(cmi.get(element))
        if score is not None:
            update[field] = score

    for field in ("suspendData", "location"):
        if elements[field] in cmi:
            update[field] = cmi[elements[field]]

    if session_time_ms is None and elements["sessionTime"] in cmi_values:
        parse = parse_iso8601_duration if record.version == "2004" else parse_cmi_timespan
        session_time_ms = parse(cmi[elements["sessionTime"]])
        if session_time_ms is None:
            logger.warning(
                f"Ignoring malformed session time {cmi[elements['sessionTime']]!r} "
                f"for runtime record {record.id}"
            )
    if session_time_ms is not None:
        update["sessionTime"] = session_time_ms

    if finish:
        total = record.totalTime + update.get("sessionTime", record.sessionTime)
        update["totalTime"] = total
        fmt = format_iso8601_duration if record.version == "2004" else format_cmi_timespan
        cmi[elements["totalTime"]] = fmt(total)

    timestamp = now if now is not None else now_ms()
    update["cmiData"] = cmi
    update["lastAccessedAt"] = timestamp
    update["updatedAt"] = timestamp
    return record.model_copy(update=update)
