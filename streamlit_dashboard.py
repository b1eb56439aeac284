"""
Streamlit admin console for identity verification review and access audit
"""

import streamlit as st
import requests
import pandas as pd
from datetime import datetime, time as dt_time
import time
from typing import Dict, Optional
import os
import uuid

# Configuration
SERVICE_URL = os.getenv("SERVICE_URL", "http://localhost:8000").rstrip("/")
API_BASE_URL = f"{SERVICE_URL}/api/v1"

CHANNELS = ["oneci", "cnam", "face"]
ACCESS_TYPES = ["full_view", "oneci_data", "cnam_data", "face_data"]

st.set_page_config(
    page_title="Identity Verification Console",
    page_icon="🪪",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
    .success-alert {
        color: #155724;
        background-color: #d4edda;
        border: 1px solid #c3e6cb;
        padding: 0.75rem;
        border-radius: 0.25rem;
        margin: 1rem 0;
    }
    .error-alert {
        color: #721c24;
        background-color: #f8d7da;
        border: 1px solid #f5c6cb;
        padding: 0.75rem;
        border-radius: 0.25rem;
        margin: 1rem 0;
    }
</style>
""", unsafe_allow_html=True)


def make_api_request(
    endpoint: str,
    method: str = "GET",
    data: Dict = None,
    params: Dict = None,
    raw: bool = False
) -> Dict:
    """Make an API request on behalf of the signed-in administrator"""
    url = f"{API_BASE_URL}{endpoint}"
    headers = {
        "Content-Type": "application/json",
        "X-Admin-Id": st.session_state.get("admin_id", ""),
        "X-Correlation-ID": f"console-{int(time.time())}-{uuid.uuid4().hex[:8]}"
    }

    try:
        if method == "GET":
            response = requests.get(url, headers=headers, params=params, timeout=30)
        elif method == "POST":
            response = requests.post(url, headers=headers, json=data, params=params, timeout=30)
        else:
            raise ValueError(f"Unsupported HTTP method: {method}")

        if response.status_code < 400:
            return {"success": True, "data": response.text if raw else response.json()}

        error_data = response.json() if response.content else {}
        return {"success": False, "error": error_data.get("detail", error_data) or {"message": "Unknown error"}}

    except requests.exceptions.RequestException as e:
        return {"success": False, "error": {"message": f"Network error: {str(e)}"}}


def show_error(title: str, error: Dict):
    if isinstance(error, list):
        # request validation errors
        error = {"error": "ValidationError", "message": "; ".join(e.get("msg", "") for e in error)}
    st.markdown(f"""
    <div class="error-alert">
        <strong>❌ {title}</strong><br>
        Error: {error.get('error', 'Unknown error')}<br>
        Message: {error.get('message', 'No details available')}<br>
        Correlation ID: {error.get('correlation_id', 'N/A')}
    </div>
    """, unsafe_allow_html=True)


def check_service_health() -> Dict:
    """Check if the identity trust service is healthy"""
    try:
        response = requests.get(f"{SERVICE_URL}/healthz", timeout=10)
        if response.status_code == 200:
            return response.json()
        return {"status": "unhealthy", "error": "Service unavailable"}
    except requests.exceptions.RequestException:
        return {"status": "unhealthy", "error": "Cannot connect to service"}


def records_frame(records) -> pd.DataFrame:
    df = pd.DataFrame(records)
    for column in ("updatedAt", "oneciVerifiedAt", "faceVerifiedAt", "adminReviewedAt"):
        if column in df:
            df[column] = pd.to_datetime(df[column])
    return df


def main():
    st.title("🪪 Identity Verification Console")

    st.sidebar.title("Administrator")
    st.session_state.admin_id = st.sidebar.text_input(
        "Admin ID",
        value=st.session_state.get("admin_id", ""),
        help="Recorded on every decision and every sensitive-data access"
    )

    page = st.sidebar.selectbox("Choose a page", [
        "System Status",
        "Statistics",
        "Review Queue",
        "Applicant Lookup",
        "Access Log"
    ])

    health_status = check_service_health()
    if health_status.get("status") == "healthy":
        st.sidebar.success("✅ Service Online")
    else:
        st.sidebar.error("❌ Service Degraded")
        st.sidebar.text(health_status.get("error", health_status.get("status", "Unknown error")))

    if page == "System Status":
        show_system_status(health_status)
        return

    if not st.session_state.admin_id:
        st.warning("Enter your admin ID in the sidebar to continue.")
        return

    if page == "Statistics":
        show_statistics()
    elif page == "Review Queue":
        show_review_queue()
    elif page == "Applicant Lookup":
        show_applicant_lookup()
    elif page == "Access Log":
        show_access_log()


def show_system_status(health_status: Dict):
    """Display system status page"""
    st.header("🔍 System Status")
    st.write(f"Overall Status: {health_status.get('status', 'unknown')}")
    st.json(health_status)

    try:
        metrics = requests.get(f"{SERVICE_URL}/metrics", timeout=10).json().get("metrics", {})
    except requests.exceptions.RequestException:
        metrics = {}
    if metrics:
        col1, col2, col3 = st.columns(3)
        col1.metric("Requests", metrics.get("total_requests", 0))
        col2.metric("Error Rate", f"{metrics.get('error_rate', 0) * 100:.1f}%")
        col3.metric("Avg Latency", f"{metrics.get('avg_processing_time_ms', 0)} ms")

    if st.button("🔄 Refresh Status"):
        st.rerun()


def show_statistics():
    """Verification totals and review turnaround"""
    st.header("📈 Verification Statistics")

    result = make_api_request("/admin/stats")
    if not result["success"]:
        show_error("Could not load statistics", result["error"])
        return

    stats = result["data"]
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Users", stats["total"])
    col2.metric("Awaiting Review", stats["pending"])
    col3.metric("Verified", stats["verified"])
    col4.metric("Rejected", stats["rejected"])

    col1, col2 = st.columns(2)
    col1.metric("Avg Processing Time", f"{stats['avgProcessingTimeHours']:.1f} h")
    col2.metric("Avg Trust Score", f"{stats['avgTrustScore']:.0f}/100")

    by_channel = pd.DataFrame(
        [{"channel": k.upper(), "verified": v} for k, v in stats["verifiedByChannel"].items()]
    )
    st.bar_chart(by_channel, x="channel", y="verified")


def show_review_queue():
    """Pending submissions with approve / reject actions"""
    st.header("📥 Review Queue")

    col1, col2, col3 = st.columns(3)
    with col1:
        statuses = st.multiselect("Status", ["pending_review", "pending"], default=["pending_review", "pending"])
    with col2:
        channel = st.selectbox("Channel", ["All"] + CHANNELS)
    with col3:
        submitted_after: Optional[datetime] = None
        after_date = st.date_input("Updated after", value=None)
        if after_date:
            submitted_after = datetime.combine(after_date, dt_time.min)

    params = {"status": statuses}
    if channel != "All":
        params["channel"] = channel
    if submitted_after:
        params["submitted_after"] = submitted_after.isoformat()

    result = make_api_request("/admin/reviews", params=params)
    if not result["success"]:
        show_error("Could not load the review queue", result["error"])
        return

    records = result["data"]
    if not records:
        st.info("Nothing awaiting review.")
        return

    df = records_frame(records)
    st.dataframe(
        df[["userId", "oneciStatus", "cnamStatus", "faceStatus", "trustScore", "updatedAt"]],
        column_config={
            "userId": st.column_config.TextColumn("User ID", width="medium"),
            "trustScore": st.column_config.NumberColumn("Trust Score", width="small"),
            "updatedAt": st.column_config.DatetimeColumn("Updated"),
        },
        hide_index=True,
        use_container_width=True
    )

    st.subheader("Decision")
    with st.form("decision_form"):
        col1, col2, col3 = st.columns(3)
        with col1:
            target_user = st.selectbox("User", df["userId"].tolist())
        with col2:
            decision_channel = st.selectbox("Channel", CHANNELS)
        with col3:
            decision = st.radio("Decision", ["approve", "reject"], horizontal=True)
        notes = st.text_area("Notes", placeholder="e.g. Document illegible")

        if st.form_submit_button("Submit decision", type="primary"):
            if decision == "reject" and not notes.strip():
                st.error("Notes are required when rejecting.")
                return
            result = make_api_request("/admin/reviews/decisions", "POST", {
                "targetUserId": target_user,
                "channel": decision_channel,
                "decision": decision,
                "notes": notes or None
            })
            if result["success"]:
                data = result["data"]
                st.markdown(f"""
                <div class="success-alert">
                    <strong>✅ Decision recorded</strong><br>
                    {decision_channel.upper()} is now {data.get(decision_channel + 'Status')}<br>
                    Trust score: {data.get('trustScore')}
                </div>
                """, unsafe_allow_html=True)
            else:
                show_error("Decision failed", result["error"])


def show_applicant_lookup():
    """Record, score and (audited) raw documents of one applicant"""
    st.header("🔎 Applicant Lookup")

    user_id = st.text_input("User ID")
    if not user_id:
        return

    record = make_api_request(f"/verifications/{user_id}")
    score = make_api_request(f"/verifications/{user_id}/score")
    if not record["success"] or not score["success"]:
        show_error("Lookup failed", (record.get("error") or score.get("error")))
        return

    data = record["data"]
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Trust Score", score["data"]["score"], help=score["data"]["recommendation"])
    col2.metric("ONECI", data["oneciStatus"])
    col3.metric("CNAM", data["cnamStatus"])
    col4.metric("Face", data["faceStatus"])

    breakdown = pd.DataFrame(
        [{"criterion": k, "points": v} for k, v in score["data"]["breakdown"].items()]
    )
    st.bar_chart(breakdown, x="criterion", y="points")
    st.caption(f"Potential gain: {score['data']['potentialGain']} points")

    st.subheader("Sensitive data")
    st.warning("Viewing raw documents is recorded in the access log under your admin ID.")
    access_type = st.selectbox("Access type", ACCESS_TYPES)
    if st.button("Reveal documents"):
        result = make_api_request(
            f"/admin/verifications/{user_id}/sensitive",
            params={"access_type": access_type}
        )
        if result["success"]:
            st.dataframe(pd.DataFrame(result["data"]["items"]), hide_index=True, use_container_width=True)
        else:
            show_error("Access refused", result["error"])


def show_access_log():
    """Compliance view of privileged reads"""
    st.header("📊 Access Log")

    col1, col2, col3 = st.columns(3)
    with col1:
        admin_filter = st.text_input("Admin ID filter")
    with col2:
        target_filter = st.text_input("Target user filter")
    with col3:
        type_filter = st.selectbox("Access type", ["All"] + ACCESS_TYPES)

    page_size = st.select_slider("Page size", options=[25, 50, 100, 250], value=50)
    page_number = st.number_input("Page", min_value=1, value=1, step=1)

    params = {"limit": page_size, "offset": (page_number - 1) * page_size}
    if admin_filter:
        params["admin_id"] = admin_filter
    if target_filter:
        params["target_user_id"] = target_filter
    if type_filter != "All":
        params["access_type"] = type_filter

    result = make_api_request("/admin/audit-logs", params=params)
    if not result["success"]:
        show_error("Could not load the access log", result["error"])
        return

    data = result["data"]
    st.caption(f"{data['total']} entries")
    if data["entries"]:
        df = pd.DataFrame(data["entries"])
        df["accessedAt"] = pd.to_datetime(df["accessedAt"])
        st.dataframe(
            df,
            column_config={
                "accessedAt": st.column_config.DatetimeColumn("Accessed At"),
                "adminId": st.column_config.TextColumn("Admin"),
                "targetUserId": st.column_config.TextColumn("Target User"),
                "accessType": st.column_config.TextColumn("Access Type", width="small"),
            },
            hide_index=True,
            use_container_width=True
        )
    else:
        st.info("No entries match the filters.")

    st.subheader("Export")
    delimiter = st.selectbox("Delimiter", [",", ";", "\t", "|"], format_func=lambda d: "tab" if d == "\t" else d)
    export_params = {k: v for k, v in params.items() if k not in ("limit", "offset")}
    export_params["delimiter"] = delimiter
    if st.button("Prepare report"):
        export = make_api_request("/admin/audit-logs/export", params=export_params, raw=True)
        if export["success"]:
            st.download_button(
                "⬇️ Download report",
                data=export["data"],
                file_name=f"verification_access_log_{datetime.now():%Y%m%d}.csv",
                mime="text/csv"
            )
        else:
            show_error("Export failed", export["error"])


if __name__ == "__main__":
    main()
