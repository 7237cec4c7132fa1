import json
import logging

import pandas as pd
import streamlit as st

import config
from backend import DataManager
from entities import ENTITY_TYPES, ID_FIELDS, SlotRestrictionRule
from errors import DataAlchemistError
from exporter import prepare_for_csv
from validation import is_export_ready, summarize

logging.basicConfig(level=config.LOG_LEVEL)

st.set_page_config(page_title="Data Alchemist Dashboard", layout="wide")
st.title("🧪 Data Alchemist")
st.caption("Forge your raw data into a perfectly configured resource plan.")

# Instantiate DataManager (singleton in session state)
if "dm" not in st.session_state:
    st.session_state.dm = DataManager()

dm: DataManager = st.session_state.dm


def show_error(e: Exception):
    st.error(f"❌ {e}")


# --- Sidebar: uploads and weights ---
with st.sidebar:
    st.header("1. Upload Data Files")
    for entity_type in ENTITY_TYPES:
        uploaded_file = st.file_uploader(
            f"{entity_type.capitalize()} (CSV or XLSX)", type=["csv", "xlsx", "xls"], key=f"upload_{entity_type}"
        )
        if uploaded_file is not None and st.session_state.get(f"loaded_{entity_type}") != uploaded_file.file_id:
            try:
                dm.load_file(uploaded_file.getvalue(), filename=uploaded_file.name, entity_type=entity_type)
                st.session_state[f"loaded_{entity_type}"] = uploaded_file.file_id
                st.success(f"{entity_type.capitalize()} loaded with {len(dm.data.table(entity_type))} rows")
            except DataAlchemistError as e:
                show_error(e)
        if dm.data.table(entity_type) and st.button(f"Clear {entity_type}", key=f"clear_{entity_type}"):
            dm.clear_table(entity_type)
            st.session_state.pop(f"loaded_{entity_type}", None)
            st.rerun()

    st.markdown("---")
    st.header("2. Prioritization & Weights")
    weights = {
        "PriorityLevel": st.slider("Client Priority", 0, 100, int(dm.priorities.get("PriorityLevel", 50))),
        "RequestedTaskIds": st.slider("Request Fulfillment", 0, 100, int(dm.priorities.get("RequestedTaskIds", 50))),
        "Fairness": st.slider("Workload Fairness", 0, 100, int(dm.priorities.get("Fairness", 50))),
    }
    dm.set_priorities(weights)


if dm.data.is_empty:
    st.info("Upload clients, workers or tasks to get started.")
    st.stop()

# --- Validation summary ---
issues = dm.validate_all()
counts = summarize(issues)
col_errors, col_warnings, col_ready = st.columns(3)
col_errors.metric("Errors", counts["errors"])
col_warnings.metric("Warnings", counts["warnings"])
col_ready.metric("Export ready", "Yes" if is_export_ready(issues) else "No")

# --- Editable grids ---
st.header("3. Data")
tabs = st.tabs([f"{t.capitalize()} ({len(dm.data.table(t))})" for t in ENTITY_TYPES])
for tab, entity_type in zip(tabs, ENTITY_TYPES):
    with tab:
        rows = dm.data.table(entity_type)
        if not rows:
            st.write("No rows loaded.")
            continue
        original = pd.DataFrame(prepare_for_csv(rows))
        edited = st.data_editor(original, key=f"grid_{entity_type}", use_container_width=True)
        changed = False
        for row_index in range(min(len(original), len(edited))):
            for column in original.columns:
                before, after = original.iloc[row_index][column], edited.iloc[row_index][column]
                if str(before) != str(after):
                    # numpy scalars back to plain Python values
                    value = after.item() if hasattr(after, "item") else after
                    dm.update_cell(entity_type, row_index, column, value)
                    changed = True
        if changed:
            st.rerun()

        with st.expander("Issues in this table"):
            for row in dm.rows_with_issues(entity_type):
                for err in row["errors"]:
                    icon = "🛑" if err["severity"] == "error" else "⚠️"
                    st.write(f"{icon} **{row.get(ID_FIELDS[entity_type])}** · {err['field']}: {err['message']}")

# --- Rules ---
st.header("4. Business Rules")
if dm.rules:
    for rule in dm.rules:
        col_rule, col_remove = st.columns([6, 1])
        col_rule.write(f"**{rule.type}** · {rule.description}")
        if col_remove.button("Remove", key=f"remove_{rule.id}"):
            dm.remove_rule(rule.id)
            st.rerun()
else:
    st.write("No rules yet.")

ai_tab, manual_tab = st.tabs(["Create with AI", "Create manually"])
with ai_tab:
    rule_text = st.text_area("Describe your rule:", placeholder="e.g., Tasks T1 and T2 must always run together")
    if st.button("Create Rule", type="primary"):
        if rule_text.strip():
            with st.spinner("Creating rule..."):
                try:
                    rule = dm.add_rule_from_nl(rule_text.strip())
                    st.success(f"✅ Rule created: {rule.description}")
                    st.rerun()
                except DataAlchemistError as e:
                    show_error(e)
        else:
            st.warning("Please describe the rule first")

with manual_tab:
    with st.form("corun_form"):
        st.subheader("Co-run")
        task_ids = st.text_input("Task IDs (comma separated)", placeholder="T1,T2")
        if st.form_submit_button("Add Co-run Rule"):
            try:
                dm.add_rule({"type": "coRun", "taskIds": task_ids})
                st.rerun()
            except DataAlchemistError as e:
                show_error(e)

    with st.form("slot_form"):
        st.subheader("Slot restriction")
        target = st.selectbox("Target group", [SlotRestrictionRule.WORKER_GROUP, SlotRestrictionRule.CLIENT_GROUP])
        group_tag = st.text_input("Group tag")
        min_slots = st.number_input("Min. common slots", min_value=1, value=1)
        if st.form_submit_button("Add Slot Restriction Rule"):
            dm.add_rule({"type": "slotRestriction", "targetGroup": target, "groupTag": group_tag, "minCommonSlots": int(min_slots)})
            st.rerun()

    with st.form("load_form"):
        st.subheader("Load limit")
        worker_group = st.text_input("Worker group")
        max_slots = st.number_input("Max slots per phase", min_value=1, value=1)
        if st.form_submit_button("Add Load Limit Rule"):
            dm.add_rule({"type": "loadLimit", "workerGroup": worker_group, "maxSlotsPerPhase": int(max_slots)})
            st.rerun()

    with st.form("phase_form"):
        st.subheader("Phase window")
        task_id = st.text_input("Task ID")
        phases = st.text_input("Allowed phases", placeholder="1,2,3 or 1-3")
        if st.form_submit_button("Add Phase Window Rule"):
            dm.add_rule({"type": "phaseWindow", "taskId": task_id, "allowedPhases": phases})
            st.rerun()

# --- AI assistant ---
st.header("5. AI Assistant")
analysis_col, suggest_col, correct_col = st.columns(3)

if analysis_col.button("Analyze data"):
    try:
        st.session_state.findings = dm.analyze()
    except DataAlchemistError as e:
        show_error(e)
if suggest_col.button("Suggest rules"):
    try:
        st.session_state.rule_suggestions = dm.get_recommended_rules()
    except DataAlchemistError as e:
        show_error(e)
if correct_col.button("Suggest corrections"):
    try:
        st.session_state.corrections = dm.suggest_corrections()
    except DataAlchemistError as e:
        show_error(e)

for finding in st.session_state.get("findings", []):
    st.write(f"• {finding}")

for i, rule in enumerate(st.session_state.get("rule_suggestions", [])):
    col_rule, col_add = st.columns([6, 1])
    col_rule.write(f"**{rule.type}** · {rule.description}")
    if col_add.button("Add", key=f"add_suggestion_{i}"):
        dm.add_rule(rule)
        st.session_state.rule_suggestions.pop(i)
        st.rerun()

for i, correction in enumerate(st.session_state.get("corrections", [])):
    col_fix, col_apply = st.columns([6, 1])
    col_fix.write(
        f"**{correction.row_id}** · {correction.field} → `{json.dumps(correction.new_value, default=str)}` "
        f"({correction.correction_type.value}): {correction.reason}"
    )
    if col_apply.button("Apply", key=f"apply_correction_{i}"):
        dm.apply_correction(correction)
        st.session_state.corrections.pop(i)
        st.rerun()

# --- Export ---
st.header("6. Export Config & Data")
if not is_export_ready(issues):
    st.warning(f"{counts['errors']} error(s) remain. Exported data will still contain them.")
for f in dm.export_payloads():
    st.download_button(f"Download {f['name']}", data=f["content"], file_name=f["name"], mime=f["type"])
