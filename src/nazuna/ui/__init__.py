"""
User interface components for Nazuna.

- **console.py**: prompt_toolkit helpers used while pairing: phone number
  prompt, pairing code and QR token display.
"""
