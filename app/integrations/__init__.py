"""app.integrations — External service clients.

Outbound HTTP calls to third-party APIs go through a client in this package,
never via bare `requests` calls in services or blueprints.

Like `app/ai/gateway.py`, every call is:
  - Retried with backoff on transient failures
  - Rate limited on the client side
  - Logged when an attempt fails

Current clients:
  weather.WeatherClient — Open-Meteo daily forecast/history lookup
"""
