# command_center/base_utils.py

import json
import logging
import re
from datetime import datetime, timezone

import commentjson


logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

logger = logging.getLogger("command_center")


def utcnow() -> datetime:
    """
    Naive UTC timestamp. All persisted datetimes are naive UTC so that
    SQLite and Postgres rows compare the same way.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BaseUtils():

    def clean_triple_backticks(self, code) -> str:
        """
        Strips a single leading/trailing markdown fence (```json ... ```) and surrounding whitespace.
        """
        cleaned = (code or "").strip()
        cleaned = re.sub(r'^```[a-zA-Z]*', '', cleaned)
        cleaned = re.sub(r'```$', '', cleaned)
        return cleaned.strip()

    def load_json_strict(self, json_str: str):
        """
        Parses model JSON. Comments are tolerated (the prompt schema shows them and models
        sometimes echo them back); anything else that is not valid JSON raises.
        """
        return commentjson.loads(self.clean_triple_backticks(json_str))

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value, indent=2)
        except TypeError:
            return str(value).strip()

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing placeholders with corresponding values from kwargs.

        it works differently from the standard "format" method as instead of looking for all the potential keys,
        looks only for the keys as passed in kwargs, so JSON braces in prompts are left alone.
        """
        # List to track keys that were not found
        missing_keys = []
        # Regex pattern to match placeholders like {key}
        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            else:
                missing_keys.append(key)
                return match.group(0)  # Leave the placeholder unchanged

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.info(f"\033[93m\033[3mMissing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}\033[0m")
        return result
