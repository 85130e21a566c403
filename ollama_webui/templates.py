from __future__ import annotations

import json
from html import escape
from typing import Any, Dict, Optional


def render_index_page(
    *,
    settings: Dict[str, Any],
    user_id: Optional[str],
    status: Dict[str, str],
) -> str:
    ollama = settings.get("ollama", {})
    config_html = render_config_block(settings)
    account_html = render_account_card(user_id)
    badge_state = escape(status.get("state", "warn"))
    badge_label = escape(status.get("label", "LLM Unknown"))
    model = escape(str(ollama.get("model", "")))
    scripts = _page_script()

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>Ollama Travel Desk</title>
  <style>
    :root {{
      color-scheme: light dark;
      --bg: #f5f5f5;
      --border: #ccc;
      --panel-bg: #fff;
      --accent: #3367d6;
      --muted: #666;
      font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
    }}
    body {{
      margin: 0;
      padding: 1.5rem;
      background: var(--bg);
      color: #111;
    }}
    header {{
      display: flex;
      align-items: center;
      justify-content: space-between;
      gap: 1rem;
      margin-bottom: 1rem;
    }}
    main {{
      display: grid;
      grid-template-columns: repeat(auto-fit, minmax(360px, 1fr));
      gap: 1rem;
    }}
    .card {{
      background: var(--panel-bg);
      border: 1px solid var(--border);
      border-radius: 12px;
      padding: 1rem;
    }}
    .card h2 {{
      margin-top: 0;
      font-size: 1.1rem;
    }}
    .badge {{
      padding: 0.2rem 0.6rem;
      border-radius: 999px;
      font-size: 0.8rem;
      border: 1px solid var(--border);
    }}
    .badge[data-state="ok"] {{
      background: #e6f4ea;
      color: #0a7a0a;
    }}
    .badge[data-state="warn"] {{
      background: #fdecea;
      color: #b00020;
    }}
    textarea {{
      width: 100%;
      min-height: 120px;
      box-sizing: border-box;
    }}
    input[type=text], input[type=password], input[type=date] {{
      width: 100%;
      box-sizing: border-box;
      margin-bottom: 0.4rem;
    }}
    button {{
      padding: 0.4rem 1rem;
      border: 1px solid #333;
      border-radius: 8px;
      background: #111;
      color: #fff;
      cursor: pointer;
    }}
    button:disabled {{
      opacity: 0.6;
    }}
    .output {{
      white-space: pre-wrap;
      border: 1px solid #eee;
      border-radius: 8px;
      padding: 0.75rem;
      min-height: 80px;
      background: #fafafa;
      margin-top: 0.5rem;
    }}
    .muted {{
      color: var(--muted);
      font-size: 0.85rem;
    }}
    .status-line {{
      min-height: 1.2rem;
      font-size: 0.9rem;
    }}
    pre {{
      font-family: Consolas, "Courier New", monospace;
      overflow-x: auto;
    }}
  </style>
</head>
<body>
  <header>
    <h1>Ollama Travel Desk</h1>
    <div>
      <span class="badge" id="llm-badge" data-state="{badge_state}">{badge_label}</span>
      <span class="badge" id="user-badge">{escape(user_id or "Guest")}</span>
    </div>
  </header>
  <main>
    <section class="card">
      <h2>Ask the model</h2>
      <p class="muted">Model <code>{model}</code>. Choose Ask for a single answer or Ask with streaming to see it arrive.</p>
      <textarea id="prompt" placeholder="Write your question here"></textarea>
      <div>
        <button id="ask">Ask</button>
        <button id="ask-stream">Ask with streaming</button>
      </div>
      <h3>Answer</h3>
      <div class="output" id="out"></div>
      <h3>Streaming answer</h3>
      <div class="output" id="out-stream"></div>
    </section>
    {account_html}
    <section class="card" id="travel-card">
      <h2>Plan a trip</h2>
      <input type="text" id="destination" placeholder="Destination" />
      <label class="muted">From <input type="date" id="start-date" /></label>
      <label class="muted">To <input type="date" id="end-date" /></label>
      <button id="plan-trip">Plan trip</button>
      <div class="output" id="travel-out"></div>
    </section>
    <section class="card" id="weather-card">
      <h2>Weather</h2>
      <input type="text" id="city" placeholder="City" />
      <button id="weather-lookup">Look up</button>
      <div class="output" id="weather-out"></div>
    </section>
    <section class="card">
      <h2>Current config</h2>
      <p class="muted">What the server reads from its config file right now.</p>
      <pre id="config">{config_html}</pre>
      <button id="refresh-config">Refresh</button>
    </section>
  </main>
  {scripts}
</body>
</html>"""


def render_config_block(settings: Dict[str, Any]) -> str:
    return escape(json.dumps(settings, indent=2, sort_keys=True))


def render_account_card(user_id: Optional[str]) -> str:
    if user_id:
        return f"""
    <section class="card" id="account-card">
      <h2>Account</h2>
      <p>Signed in as <strong>{escape(user_id)}</strong>.</p>
      <button id="signout">Sign out</button>
      <h3>Change password</h3>
      <input type="password" id="current-password" placeholder="Current password" />
      <input type="password" id="new-password" placeholder="New password" />
      <button id="change-password">Change password</button>
      <h3>Delete account</h3>
      <input type="password" id="delete-password" placeholder="Password" />
      <button id="delete-account">Delete account</button>
      <div class="status-line" id="account-status"></div>
    </section>
    """
    return """
    <section class="card" id="account-card">
      <h2>Account</h2>
      <p class="muted">Sign in to plan trips and look up the weather.</p>
      <input type="text" id="user-id" placeholder="User id" />
      <input type="password" id="password" placeholder="Password" />
      <button id="signin">Sign in</button>
      <button id="signup">Sign up</button>
      <div class="status-line" id="account-status"></div>
    </section>
    """


def _page_script() -> str:
    return """
    <script>
      (function(){
        async function api(path, method, body) {
          const response = await fetch(path, {
            method: method || 'GET',
            headers: { 'Content-Type': 'application/json' },
            credentials: 'include',
            body: body ? JSON.stringify(body) : undefined
          });
          const data = await response.json().catch(() => ({}));
          if (!response.ok) {
            throw new Error(data.error || ('Request failed: ' + response.status));
          }
          return data;
        }

        function byId(id) {
          return document.getElementById(id);
        }

        function setStatus(message, isError) {
          const line = byId('account-status');
          if (!line) {
            return;
          }
          line.textContent = message;
          line.style.color = isError ? '#b00020' : '#0a7a0a';
        }

        function bind(id, handler) {
          const element = byId(id);
          if (!element) {
            return;
          }
          element.addEventListener('click', async () => {
            element.disabled = true;
            try {
              await handler();
            } catch (error) {
              setStatus(error.message, true);
            } finally {
              element.disabled = false;
            }
          });
        }

        bind('ask', async () => {
          const out = byId('out');
          out.textContent = 'Thinking...';
          try {
            const data = await api('/chat', 'POST', { prompt: byId('prompt').value });
            out.textContent = data.answer || '';
          } catch (error) {
            out.textContent = 'Request failed: ' + error.message;
          }
        });

        bind('ask-stream', async () => {
          const out = byId('out-stream');
          out.textContent = '';
          try {
            const response = await fetch('/chat-stream', {
              method: 'POST',
              headers: { 'Content-Type': 'application/json' },
              body: JSON.stringify({ prompt: byId('prompt').value })
            });
            const reader = response.body.getReader();
            const decoder = new TextDecoder();
            while (true) {
              const { value, done } = await reader.read();
              if (done) {
                break;
              }
              out.textContent += decoder.decode(value, { stream: true });
            }
            out.textContent += decoder.decode();
          } catch (error) {
            out.textContent = 'Stream failed: ' + error.message;
          }
        });

        bind('refresh-config', async () => {
          const data = await api('/config');
          byId('config').textContent = JSON.stringify(data, null, 2);
        });

        bind('signin', async () => {
          await api('/api/signin', 'POST', { userId: byId('user-id').value, password: byId('password').value });
          window.location.reload();
        });

        bind('signup', async () => {
          await api('/api/signup', 'POST', { userId: byId('user-id').value, password: byId('password').value });
          window.location.reload();
        });

        bind('signout', async () => {
          await api('/api/signout', 'POST');
          window.location.reload();
        });

        bind('change-password', async () => {
          await api('/api/change-password', 'POST', {
            currentPassword: byId('current-password').value,
            newPassword: byId('new-password').value
          });
          setStatus('Password changed.', false);
        });

        bind('delete-account', async () => {
          if (!window.confirm('Delete this account?')) {
            return;
          }
          await api('/api/delete-account', 'POST', { password: byId('delete-password').value });
          window.location.reload();
        });

        bind('plan-trip', async () => {
          const out = byId('travel-out');
          out.textContent = 'Planning your trip...';
          try {
            const data = await api('/api/travel-plan', 'POST', {
              destination: byId('destination').value,
              startDate: byId('start-date').value,
              endDate: byId('end-date').value
            });
            const parts = [data.destination + ': ' + data.startDate + ' to ' + data.endDate];
            const sections = data.sections || {};
            if (sections.must_visit) parts.push('MUST VISIT\\n' + sections.must_visit);
            if (sections.packing_list) parts.push('PACKING LIST\\n' + sections.packing_list);
            if (sections.precautions) parts.push('PRECAUTIONS\\n' + sections.precautions);
            if (parts.length === 1) parts.push(data.answer || '');
            out.textContent = parts.join('\\n\\n');
          } catch (error) {
            out.textContent = 'Error: ' + error.message;
          }
        });

        bind('weather-lookup', async () => {
          const out = byId('weather-out');
          out.textContent = 'Loading...';
          try {
            const data = await api('/api/weather?city=' + encodeURIComponent(byId('city').value));
            const unit = (data.units && data.units.temperature) || '';
            const lines = [
              data.location + ' (' + data.timezone + ')',
              'Now: ' + data.current.temperature + unit + ', ' + data.current.description,
              ''
            ];
            (data.daily7 || []).forEach((day) => {
              lines.push(day.date + '  ' + day.min + unit + ' / ' + day.max + unit + '  ' + day.description);
            });
            out.textContent = lines.join('\\n');
          } catch (error) {
            out.textContent = 'Error: ' + error.message;
          }
        });

        fetch('/health/ollama').then((r) => r.json()).then((data) => {
          const badge = byId('llm-badge');
          badge.dataset.state = data.status;
          badge.textContent = data.label;
        }).catch(() => {});
      })();
    </script>
    """
