# artifactflow/base_utils.py

import logging
import re

from sqlalchemy import inspect as sa_inspect


logger = logging.getLogger("artifactflow")


def slugify(name: str) -> str:
    """'Non-Functional Requirements' -> 'non-functional_requirements'"""
    s = (name or "").lower()
    s = re.sub(r"\s+", "_", s)
    return re.sub(r"[^\w-]+", "", s)


def loaded_attr(obj, name: str):
    """
    Read an attribute only if it is already present on the object.
    Unloaded ORM relations (lazy, detached) read as None instead of hitting the DB.
    """
    if obj is None:
        return None
    state = sa_inspect(obj, raiseerr=False)
    if state is not None and name in state.unloaded:
        return None
    return getattr(obj, name, None)


class BaseUtils():

    # -----------------------
    # General Utils
    # -----------------------

    def clean_triple_backticks(self, code) -> str:
        pattern = r'```[a-zA-Z]*\n?|```\n?'
        return re.sub(pattern, '', code)

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Replaces {key} placeholders using only the keys passed in kwargs.
        Unknown placeholders are left untouched (unlike str.format, which would raise),
        so prompt bodies can safely contain literal braces.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            missing_keys.append(key)
            return match.group(0)

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.info(f"\033[93m\033[3mMissing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}\033[0m")
        return result
