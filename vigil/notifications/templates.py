"""Message template loading and rendering."""

from pathlib import Path

import yaml


_templates: dict | None = None


def load_templates() -> dict:
    """
    Load message templates from YAML file.

    Caches templates after first load.
    """
    global _templates
    if _templates is not None:
        return _templates

    yaml_path = Path(__file__).parent / "messages.yaml"
    with open(yaml_path) as f:
        _templates = yaml.safe_load(f)

    return _templates


def render_message(template: str, context: dict) -> str:
    """
    Render a message template with context variables.

    Raises:
        KeyError: If a required variable is missing from context
    """
    return template.format(**context)


def get_message(message_type: str, context: dict) -> str:
    """
    Get and render the free-form text for a message type.

    Args:
        message_type: e.g., "slot_reminder", "missed_warning"
        context: Variables to substitute
    """
    entry = load_templates()[message_type]
    # Keyword replies are plain strings: free-form only
    text = entry if isinstance(entry, str) else entry["whatsapp"]
    return render_message(text, context).strip()


def get_template(message_type: str, context: dict) -> tuple[str, list[str]]:
    """
    Get the approved template name and its ordered body parameters.

    Used outside the 24-hour free-form window.

    Returns:
        (template_name, params)

    Raises:
        KeyError: If the message type has no template or a parameter is missing
    """
    approved = load_templates()[message_type]["template"]
    params = [str(context[key]) for key in approved.get("params", [])]
    return approved["name"], params


def has_template(message_type: str) -> bool:
    entry = load_templates().get(message_type)
    return isinstance(entry, dict) and "template" in entry
