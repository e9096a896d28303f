import re
from types import MappingProxyType
from typing import List, Mapping

from models.enums import ReminderType

PLACEHOLDER = re.compile(r"\{([^{}]+)\}")
LEFTOVER_PLACEHOLDER = re.compile(r"\{[^}]+\}")


DEFAULT_TEMPLATES: Mapping[ReminderType, str] = MappingProxyType(
    {
        ReminderType.SEVEN_DAYS_BEFORE: (
            "Hi {tenantFirstName}, this is a friendly reminder that your rent of "
            "KES {amount} for {propertyName} Unit {unitNumber} is due on {dueDate}. "
            "Please ensure timely payment. Thank you!"
        ),
        ReminderType.THREE_DAYS_BEFORE: (
            "Hi {tenantFirstName}, your rent of KES {amount} for Unit {unitNumber} "
            "is due in 3 days ({dueDate}). Please prepare your payment. Thank you!"
        ),
        ReminderType.ONE_DAY_BEFORE: (
            "Hi {tenantFirstName}, reminder: your rent of KES {amount} for Unit "
            "{unitNumber} is due TOMORROW ({dueDate}). Please pay on time to avoid "
            "late fees."
        ),
        ReminderType.ON_DUE_DATE: (
            "Hi {tenantFirstName}, your rent of KES {amount} for Unit {unitNumber} "
            "is due TODAY. Please make your payment to avoid late fees. Thank you!"
        ),
        ReminderType.ONE_DAY_OVERDUE: (
            "Hi {tenantFirstName}, your rent of KES {amount} for Unit {unitNumber} "
            "was due yesterday ({dueDate}) and is now overdue. Please pay as soon "
            "as possible to avoid additional charges."
        ),
        ReminderType.THREE_DAYS_OVERDUE: (
            "Hi {tenantFirstName}, your rent of KES {amount} for Unit {unitNumber} "
            "is now 3 days overdue. Please settle your payment immediately. Contact "
            "{landlordName} at {landlordPhone} if you need assistance."
        ),
        ReminderType.SEVEN_DAYS_OVERDUE: (
            "URGENT: {tenantFirstName}, your rent of KES {amount} for Unit "
            "{unitNumber} is 7 days overdue. Please contact {landlordName} at "
            "{landlordPhone} immediately to discuss payment."
        ),
    }
)


def render(template: str | None, variables: Mapping[str, object]) -> str:
    if not template or not template.strip():
        return ""

    lookup = {
        str(key).lower(): "" if value is None else str(value)
        for key, value in variables.items()
    }

    def _substitute(match: re.Match) -> str:
        value = lookup.get(match.group(1).lower())
        return match.group(0) if value is None else value

    rendered = PLACEHOLDER.sub(_substitute, template)
    rendered = LEFTOVER_PLACEHOLDER.sub("", rendered)
    return rendered.strip()


def is_valid_template(template: str | None) -> bool:
    if not template or not template.strip():
        return False
    return template.count("{") == template.count("}")


def extract_variables(template: str | None) -> List[str]:
    if not template:
        return []
    names: List[str] = []
    for match in PLACEHOLDER.finditer(template):
        name = match.group(1)
        if name not in names:
            names.append(name)
    return names


def default_template(reminder_type: ReminderType) -> str:
    return DEFAULT_TEMPLATES[reminder_type]
