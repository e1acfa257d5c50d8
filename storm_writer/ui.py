# Run from project root: streamlit run storm_writer/ui.py
# UI talks to backend API (POST /research/stream for SSE, /research/{id}/rewrite|revert, /history).

import json
import os
import sys
from datetime import datetime
from pathlib import Path

# Ensure project root is on path (Streamlit may run with cwd != project root)
_root_from_file = Path(__file__).resolve().parent.parent
_cwd = os.getcwd()
for _root in (_root_from_file, _cwd):
    _root = str(_root)
    if _root not in sys.path:
        sys.path.insert(0, _root)

import requests
import streamlit as st

from storm_writer.core.config import API_BASE

STAGES = [
    ("GENERATING_QUESTIONS", "Generating Questions", "Creating diverse perspectives."),
    ("RESEARCHING", "Gathering Information", "Researching questions."),
    ("GENERATING_OUTLINE", "Creating Outline", "Structuring the article."),
    ("GENERATING_ARTICLE", "Writing Article", "Drafting the final text."),
    ("DONE", "Completed", "Research process finished."),
]


def _format_date(iso: str) -> str:
    try:
        return datetime.fromisoformat(iso).strftime("%d %b %Y, %H:%M")
    except ValueError:
        return iso


def _render_status(placeholder, stage: str, done: int, total: int) -> None:
    ids = [s[0] for s in STAGES]
    current = ids.index(stage) if stage in ids else -1
    lines = []
    for i, (sid, title, desc) in enumerate(STAGES):
        if sid == "RESEARCHING" and total:
            desc = f"Researching {done} of {total} questions."
        if stage == "DONE" or i < current:
            mark = "✅"
        elif i == current:
            mark = "⏳"
        else:
            mark = "▫️"
        lines.append(f"{mark} **{title}** — {desc}")
    placeholder.markdown("\n\n".join(lines))


def _render_article(article: str, sources: list[dict]) -> None:
    st.markdown(article)
    if sources:
        st.subheader("Citations")
        for i, s in enumerate(sources, 1):
            st.markdown(f"[{i}] [{s.get('title') or s.get('uri')}]({s.get('uri')})")


def _load_session(session_id: str) -> dict | None:
    try:
        r = requests.get(f"{API_BASE}/research/{session_id}", timeout=10)
        return r.json() if r.ok else None
    except requests.RequestException:
        return None


st.title("AI Research Assistant")

# --- History sidebar ---
with st.sidebar:
    st.header("Research History")
    try:
        r = requests.get(f"{API_BASE}/history", timeout=10)
        history = r.json() if r.ok else []
    except requests.RequestException:
        history = []
        st.caption("Backend not reachable — start the API first.")
    if not history:
        st.caption("No research history found. Completed reports will appear here.")
    for item in history:
        st.markdown(f"**{item['topic']}**")
        st.caption(_format_date(item["timestamp"]))
        col_view, col_delete = st.columns(2)
        if col_view.button("View Report", key=f"view_{item['id']}"):
            st.session_state.viewing = item
        if col_delete.button("Delete", key=f"delete_{item['id']}"):
            requests.delete(f"{API_BASE}/history/{item['id']}", timeout=10)
            st.rerun()
    if history and st.button("Clear All History", key="clear_history"):
        requests.delete(f"{API_BASE}/history", timeout=10)
        st.session_state.pop("viewing", None)
        st.rerun()

if st.session_state.get("viewing"):
    item = st.session_state.viewing
    st.subheader(f"Saved report: {item['topic']}")
    if st.button("Close report", key="close_view"):
        del st.session_state["viewing"]
        st.rerun()
    _render_article(item["article"], item.get("sources") or [])
    st.stop()

# --- New research ---
if st.session_state.get("session_id") and st.button("New Research", key="new_research"):
    requests.post(f"{API_BASE}/research/{st.session_state.session_id}/reset", timeout=10)
    st.session_state.pop("session_id", None)
    st.rerun()

topic = st.text_input("Topic", placeholder="e.g., The History of Artificial Intelligence")
if st.button("Start Research", disabled=not topic.strip(), key="start"):
    status = st.empty()
    perspectives_box = st.container()
    findings_box = st.container()
    error_box = st.empty()
    total = 0
    try:
        r = requests.post(
            f"{API_BASE}/research/stream",
            json={"topic": topic, "session_id": st.session_state.get("session_id")},
            stream=True,
            timeout=600,
        )
        if not r.ok:
            error_box.error(f"Error: {r.status_code} — {r.text[:200]}")
        else:
            current_event = None
            for line in r.iter_lines(decode_unicode=True):
                if not line:
                    continue
                if line.startswith("event:"):
                    current_event = line[6:].strip()
                    continue
                if not line.startswith("data:") or not current_event:
                    continue
                try:
                    data = json.loads(line[5:].strip())
                except json.JSONDecodeError:
                    data = {}
                if current_event == "session":
                    st.session_state.session_id = data.get("session_id")
                elif current_event == "stage":
                    progress = data.get("progress") or {}
                    total = progress.get("questions_total", total)
                    _render_status(status, data.get("stage", ""), progress.get("questions_done", 0), total)
                elif current_event == "perspectives":
                    with perspectives_box:
                        st.subheader("Generated Perspectives & Questions")
                        for p in data.get("perspectives", []):
                            st.markdown(f"**{p['perspective']}**")
                            st.markdown("\n".join(f"- {q}" for q in p.get("questions", [])))
                elif current_event == "research" and data.get("ok"):
                    with findings_box:
                        with st.expander(data.get("question", "")):
                            st.write(data.get("answer", ""))
                elif current_event == "error" or (current_event == "research" and not data.get("ok")):
                    error_box.error(data.get("message", "Unknown error"))
    except requests.RequestException as e:
        error_box.error(f"Connection failed: {e}")

# --- Result and rewrite pass ---
session = _load_session(st.session_state["session_id"]) if st.session_state.get("session_id") else None
if session and session.get("stage") == "DONE":
    if session.get("error"):
        st.error(session["error"])
    if session.get("outline"):
        with st.expander("Generated Outline"):
            st.text(session["outline"])
    if session.get("article"):
        try:
            options = requests.get(f"{API_BASE}/rewrite/options", timeout=10).json()
        except requests.RequestException:
            options = {"styles": {}, "variants": {}}
        col_style, col_variant = st.columns(2)
        style = col_style.selectbox("Rewrite style", list(options.get("styles", {})), key="rewrite_style")
        variant = col_variant.selectbox("Language variant", list(options.get("variants", {})), key="rewrite_variant")
        col_rewrite, col_revert = st.columns(2)
        if col_rewrite.button("Rewrite", key="rewrite", disabled=not style):
            with st.spinner("Rewriting..."):
                r = requests.post(
                    f"{API_BASE}/research/{session['session_id']}/rewrite",
                    json={"style": style, "variant": variant},
                    timeout=300,
                )
            if r.ok:
                session = r.json()
            else:
                st.error(f"Rewrite failed: {r.status_code} — {r.text[:200]}")
        if session.get("is_rewritten") and col_revert.button("Revert to original", key="revert"):
            r = requests.post(f"{API_BASE}/research/{session['session_id']}/revert", timeout=10)
            if r.ok:
                session = r.json()
        _render_article(session["article"], session.get("sources") or [])
