"""
Rainfall Profile Sandbox - Interactive rainfall accumulation app

A Streamlit-based application for simulating where rain water collects
along a one-dimensional landscape profile.

- Type a landscape as comma-separated heights, or cut a transect from a DEM
- Set the rainfall duration in hours
- Inspect the resulting water levels, depths and mass balance
"""

import matplotlib.pyplot as plt
import numpy as np
import streamlit as st
import structlog

from landscape_io import (
    ParseError, get_landscape_stats, load_profile_from_bytes, parse_hours,
    parse_landscape, plot_profile, random_landscape, stringify_result
)
from simulation_core import RainfallSimulator, SimulationParams, SimulationResult

# Configure logging
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


# Page configuration
st.set_page_config(
    page_title="🌧️ Rainfall Profile Sandbox",
    page_icon="🌧️",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
    .main-header {
        font-size: 2.4rem;
        font-weight: 700;
        background: linear-gradient(135deg, #0077b6 0%, #00b4d8 50%, #90e0ef 100%);
        -webkit-background-clip: text;
        -webkit-text-fill-color: transparent;
        background-clip: text;
        margin-bottom: 0.3rem;
    }
    .sub-header {
        font-size: 1.1rem;
        color: #64748b;
        margin-bottom: 1.5rem;
    }
    #MainMenu {visibility: hidden;}
    footer {visibility: hidden;}
</style>
""", unsafe_allow_html=True)


# Initialize session state
def init_session_state():
    if 'landscape' not in st.session_state:
        st.session_state.landscape = "3, 1, 6, 4, 8, 9"
    if 'hours' not in st.session_state:
        st.session_state.hours = "1"
    if 'simulation_result' not in st.session_state:
        st.session_state.simulation_result = None
    if 'error' not in st.session_state:
        st.session_state.error = None


init_session_state()


def fill_random_landscape():
    """Put a random landscape into the form and clear the previous result."""
    st.session_state.landscape = stringify_result(random_landscape())
    st.session_state.simulation_result = None
    st.session_state.error = None


def run_simulation(landscape_raw: str, hours_raw: str, premerge: bool):
    """Parse the form fields and run the engine, storing result or error."""
    try:
        heights = parse_landscape(landscape_raw)
        hours = parse_hours(hours_raw)
    except ParseError as e:
        st.session_state.simulation_result = None
        st.session_state.error = str(e)
        return

    params = SimulationParams(hours=hours, premerge=premerge)
    st.session_state.simulation_result = RainfallSimulator(heights, params).run()
    st.session_state.error = None


def render_result_text(result: SimulationResult) -> str:
    """Render levels and depths the way the result panel shows them."""
    text = f"levels\n\t{stringify_result(result.levels)}\n\n"
    text += f"waterLevels\n\t{stringify_result(result.depths)}"
    return text


def display_metrics(result: SimulationResult):
    """Display simulation metrics in columns."""
    col1, col2, col3 = st.columns(3)

    with col1:
        st.metric(label="💧 Stored Water", value=f"{result.mass_balance.stored_volume:.3f}")

    with col2:
        st.metric(label="🌊 Max Depth", value=f"{result.max_depth:.3f}")

    with col3:
        st.metric(label="🔁 Relaxation Steps", value=f"{result.steps}")


def display_mass_balance(result: SimulationResult):
    """Display mass balance information."""
    mb = result.mass_balance

    st.subheader("⚖️ Water Balance")

    col1, col2 = st.columns(2)

    with col1:
        st.write(f"🌧️ Total Rainfall: {mb.total_rainfall:.3f}")
        st.write(f"📐 Balance Error: {mb.balance_error:.3e}")

    with col2:
        st.write(f"💧 Stored: {mb.stored_volume:.3f}")
        st.write(f"⏳ Still Pending: {mb.pending_volume:.3f}")

    error_pct = mb.relative_error * 100
    if error_pct < 1e-4:
        st.success(f"✅ Balance Error: {error_pct:.2e}%")
    else:
        st.warning(f"⚠️ Balance Error: {error_pct:.2e}%")


def plot_excess_chart(result: SimulationResult):
    """Create a chart of the pending water total over relaxation steps."""
    if not result.excess_history:
        return None

    fig, ax = plt.subplots(figsize=(10, 3))
    steps = np.arange(1, len(result.excess_history) + 1)

    ax.fill_between(steps, result.excess_history, alpha=0.3, color='#3498db', step='post')
    ax.step(steps, result.excess_history, color='#2980b9', linewidth=2, where='post')
    ax.set_xlabel('Relaxation step')
    ax.set_ylabel('Pending water')
    ax.set_title('Excess Water During Relaxation')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    return fig


def main():
    st.markdown('''
    <div style="text-align: center; padding: 1rem 0 2rem 0;">
        <h1 class="main-header">🌧️ Rainfall Profile Sandbox</h1>
        <p class="sub-header">Where does the rain settle on a landscape profile?</p>
    </div>
    ''', unsafe_allow_html=True)

    # Sidebar - Controls
    with st.sidebar:
        st.markdown("## ⚙️ Controls")

        st.subheader("📂 Landscape from DEM")
        uploaded_file = st.file_uploader(
            "Upload GeoTIFF",
            type=['tif', 'tiff'],
            help="Cut a row transect from a DEM in GeoTIFF format"
        )

        if uploaded_file:
            transect_row = st.number_input("Row (-1 = middle)", min_value=-1, value=-1, step=1)

            if st.button("📥 Load Transect", use_container_width=True):
                with st.spinner("Reading transect..."):
                    try:
                        profile = load_profile_from_bytes(
                            uploaded_file.getvalue(),
                            row=None if transect_row < 0 else int(transect_row)
                        )
                        st.session_state.landscape = ", ".join(f"{h:g}" for h in profile.heights)
                        st.session_state.simulation_result = None
                        st.success(f"✅ Loaded {len(profile.heights)} positions from row {profile.index}")
                    except Exception as e:
                        logger.warning("Failed to load transect", error=str(e))
                        st.error(f"Error loading DEM: {e}")

        st.divider()

        st.subheader("🔧 Engine")
        premerge = st.checkbox(
            "Pre-merge equal levels",
            value=True,
            help="Fuse neighbouring positions of equal height before relaxation. "
                 "Results are identical either way; fewer steps are needed."
        )

    # Main form
    with st.form("simulation_form"):
        st.text_input(
            "Landscape",
            key="landscape",
            help="Comma-separated terrain heights, e.g. 3, 1, 6, 4, 8, 9"
        )
        st.text_input("Hours", key="hours", help="Rainfall duration in hours")
        submitted = st.form_submit_button("🚀 Run Simulation", type="primary")

    st.button("🎲 Random", on_click=fill_random_landscape)

    if submitted:
        run_simulation(st.session_state.landscape, st.session_state.hours, premerge)

    if st.session_state.error is not None:
        st.error(f"error:\n\t{st.session_state.error}")
        return

    result = st.session_state.simulation_result
    if result is None:
        st.info("👆 Enter a landscape and the rain duration, then run the simulation.")
        return

    st.code(render_result_text(result), language=None)

    display_metrics(result)

    fig = plot_profile(result.heights, result.levels, title="Water on the Landscape")
    st.pyplot(fig)
    plt.close(fig)

    with st.expander("📊 Details"):
        stats = get_landscape_stats(result.heights)
        st.write(stats)

        display_mass_balance(result)

        fig = plot_excess_chart(result)
        if fig is not None:
            st.pyplot(fig)
            plt.close(fig)

        csv_data = "position,height,level,depth\n"
        for i, (height, level, depth) in enumerate(zip(result.heights, result.levels, result.depths)):
            csv_data += f"{i},{height:.4f},{level:.4f},{depth:.4f}\n"

        st.download_button(
            label="⬇️ Download CSV",
            data=csv_data,
            file_name="water_levels.csv",
            mime="text/csv",
            use_container_width=True
        )


if __name__ == "__main__":
    main()
