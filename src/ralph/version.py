"""Loop version tracking.

RALPH_VERSION tracks the loop's behavior: strategy thresholds, guidance
text, directive layout. Bump this when the directive an agent receives
changes, NOT for dependency updates or infrastructure changes.

Bump rules:
- Patch (0.1.x): bug fixes, pattern table tweaks
- Minor (0.x.0): guidance or directive layout changes, new signals
- Major (x.0.0): state file or memory format changes
"""

RALPH_VERSION = "0.1.0"
