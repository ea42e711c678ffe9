"""
Group moderation for Nazuna.

- **group_policy_engine.py**: Evaluates the ordered moderation rules for
  one membership event and performs the resulting removals and messages.

- **templates.py**: Default Portuguese message texts and placeholder
  substitution for custom welcome and exit texts.

- **banner.py**: Welcome banner rendering with Pillow, avatar download with
  requests.
"""
