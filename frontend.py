import os
import base64

import streamlit as st
import requests
import pandas as pd

API_URL = os.getenv("FACECENSOR_API_URL", "http://127.0.0.1:8000")

# Page Configuration
st.set_page_config(page_title="Target Face Censor", page_icon="🎯", layout="wide")

st.markdown("""
    <style>
    .main { background-color: #0e1117; }
    .stButton>button { width: 100%; border-radius: 5px; height: 3em; }
    .stMetric { background-color: #161b22; padding: 15px; border-radius: 10px; border: 1px solid #30363d; }
    </style>
    """, unsafe_allow_html=True)

st.title("🎯 Target Face Censor")
st.caption("Find the target in your photos and censor their face")
st.markdown("---")


def decode_data_url(data_url: str) -> bytes:
    return base64.b64decode(data_url.split(",", 1)[1])


def error_message(response: requests.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        return response.text
    if isinstance(detail, dict):
        return detail.get("message", str(detail))
    return str(detail)


col1, col2 = st.columns([1, 2], gap="large")

with col1:
    st.header("⚙️ Scan Control")

    # 1. Connection & session state
    try:
        status = requests.get(f"{API_URL}/status", timeout=10).json()
    except requests.RequestException:
        st.error("❌ Backend Offline: Ensure uvicorn is running.")
        st.stop()

    if status["status"].startswith("error"):
        st.error(status["message"])
        if status["status"] == "error_target":
            st.error("TARGET ACQUISITION FAILED")
    else:
        st.info(status["message"])
    st.metric("Reference photos", status["reference_count"])

    st.markdown("---")

    # 2. Censor option
    modes = ["pixelated", "black"]
    mode = st.radio(
        "Censor option",
        modes,
        index=modes.index(status["censor_mode"]),
        format_func=lambda m: "Pixelated" if m == "pixelated" else "Black box",
        horizontal=True,
    )
    if mode != status["censor_mode"]:
        requests.put(f"{API_URL}/censor-mode", json={"mode": mode}, timeout=10)

    # 3. Batch
    files = st.file_uploader(
        "Select images",
        type=["png", "jpg", "jpeg", "bmp", "webp", "heic"],
        accept_multiple_files=True,
        disabled=not status["target_acquired"],
    )

    scan_label = f"SCAN {len(files)} IMAGES" if files else "INITIATE SCAN"
    if st.button(scan_label, disabled=not (files and status["target_acquired"])):
        payload = [("images", (f.name, f.getvalue(), f.type or "application/octet-stream")) for f in files]
        with st.spinner("Initiating batch scan..."):
            requests.post(f"{API_URL}/files", files=payload, timeout=60)
            response = requests.post(f"{API_URL}/scan", timeout=600)
        if response.ok:
            st.session_state["scan"] = response.json()
            st.session_state["links"] = {}
        else:
            st.error(error_message(response))

with col2:
    st.header("🖼️ Results")

    scan = st.session_state.get("scan")
    if not scan:
        st.write("No scan yet.")
        st.stop()

    if scan["total_targets"] > 0:
        st.success(f">> {scan['summary']} <<")
    else:
        st.warning(f">> {scan['summary']} <<")

    df = pd.DataFrame(scan["results"])
    st.dataframe(
        df[["filename", "status_text", "faces_detected", "targets_in_image"]],
        hide_index=True,
        use_container_width=True,
    )

    links = st.session_state.setdefault("links", {})
    grid = st.columns(3)
    for result in scan["results"]:
        with grid[result["index"] % 3]:
            if result["processed_image"]:
                png = decode_data_url(result["processed_image"])
                st.image(png, use_container_width=True)
                st.download_button(
                    "Download",
                    data=png,
                    file_name=f"censored_{result['filename']}",
                    mime="image/png",
                    key=f"download_{result['index']}",
                )
                if st.button("Upload & get link", key=f"upload_{result['index']}"):
                    with st.spinner("Uploading image to tmpfiles.org..."):
                        response = requests.post(f"{API_URL}/results/{result['index']}/upload", timeout=60)
                    if response.ok:
                        links[result["index"]] = response.json()["url"]
                    else:
                        st.error(f"Upload failed. {error_message(response)}")
                if result["index"] in links:
                    st.code(links[result["index"]], language=None)

            st.caption(result["filename"])
            if result["status_text"] == "TARGET MATCHED":
                st.markdown(":green[**TARGET MATCHED**]")
            elif result["status_text"] == "NO TARGET":
                st.markdown(":orange[**NO TARGET**]")
            else:
                st.markdown(f":red[**ERROR**] {result['error'] or ''}")
