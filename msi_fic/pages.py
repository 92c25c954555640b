"""HTML rendering for the index page."""

from __future__ import annotations

from typing import Any, Dict, Sequence

from jinja2 import Environment

from .secret_store import SecretOutcome

# Autoescaped; secret values and error text are rendered as text.
TEMPLATE = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>Managed identity as a federated credential</title>
    <style>
      body { font-family: Arial, Helvetica, sans-serif; margin: 2rem; }
      .card { border: 1px solid #ddd; padding: 1rem; border-radius: 6px; margin-bottom: 1rem; }
      .ok { color: green; }
      .err { color: #b00020; }
      .info { color: #555; }
    </style>
  </head>
  <body>
    <h1>Welcome{% if display_name %}, {{ display_name }}{% endif %}</h1>
    <p>Secrets read from Key Vault using a managed identity as a federated identity credential.</p>
    {% for outcome in outcomes %}
    <div class="card" data-status="{{ outcome.status }}">
      <h2>Secret from {{ outcome.target.label }}</h2>
      <p><strong>Vault:</strong> {{ outcome.target.vault_uri or 'not configured' }}
        <strong>Secret:</strong> {{ outcome.target.secret_name or 'not configured' }}</p>
      {% if outcome.ok %}
        <p class="ok">{{ outcome.display_text }}</p>
      {% elif outcome.unsupported_locally %}
        <p class="info">{{ outcome.display_text }}</p>
      {% else %}
        <p class="err">{{ outcome.display_text }}</p>
      {% endif %}
    </div>
    {% endfor %}
  </body>
</html>
"""

_environment = Environment(autoescape=True)
_index_template = _environment.from_string(TEMPLATE)


def render_index(user: Dict[str, Any], outcomes: Sequence[SecretOutcome]) -> str:
    return _index_template.render(
        display_name=user.get("name") or user.get("upn"),
        outcomes=outcomes,
    )
