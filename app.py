"""
Favorita Forecast Error Report - Interactive Dashboard

A Streamlit dashboard for exploring where the forecasting model goes wrong:
error by geography, store and item segment, the family x store type error
matrix and the clustered feature importance.

Run: python -m src.report --synthetic && streamlit run app.py
"""

import streamlit as st
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
from pathlib import Path
import warnings

from src.importance import top_n_range
from src.segments import DIMENSION_GROUPS, segment_labels

warnings.filterwarnings('ignore')

REPORTS_DIR = Path("reports")

# =============================================================================
# PAGE CONFIG
# =============================================================================

st.set_page_config(
    page_title="Favorita Forecast Errors",
    page_icon="📊",
    layout="wide",
    initial_sidebar_state="expanded"
)

# =============================================================================
# DATA LOADING (CACHED)
# =============================================================================

@st.cache_data
def load_overall_metrics():
    """Load the one-row overall metrics table."""
    path = REPORTS_DIR / "overall_metrics.csv"
    if path.exists():
        return pd.read_csv(path).iloc[0]
    return None


@st.cache_data
def load_segment_table(dimension: str):
    """Load the error table for one slicing dimension."""
    path = REPORTS_DIR / f"error_by_{dimension}.csv"
    if path.exists():
        return pd.read_csv(path)
    return None


@st.cache_data
def load_error_matrix():
    """Load the family x store type RMSLE matrix."""
    path = REPORTS_DIR / "error_matrix_family_type.csv"
    if path.exists():
        return pd.read_csv(path, index_col=0)
    return None


@st.cache_data
def load_feature_importance():
    """Load the clustered feature importance table."""
    path = REPORTS_DIR / "feature_importance.csv"
    if path.exists():
        return pd.read_csv(path)
    return None


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def format_number(n, decimals=0):
    """Format number with thousands separator."""
    if decimals == 0:
        return f"{int(n):,}"
    return f"{n:,.{decimals}f}"


def create_segment_chart(table, dim_col, metric, title, top_n=25):
    """Horizontal bar chart of one metric per segment."""
    data = table.sort_values(metric, ascending=False).head(top_n).copy()
    data['segment'] = segment_labels(data[dim_col])

    fig = px.bar(
        data.iloc[::-1],
        x=metric,
        y='segment',
        orientation='h',
        color='error_share',
        color_continuous_scale='YlOrRd',
        hover_data=['n_obs', 'rmsle', 'nwrmsle', 'bias', 'mean_actual', 'mean_pred'],
        title=title
    )
    fig.update_layout(height=max(350, 22 * len(data)), yaxis_title=dim_col)
    return fig


# =============================================================================
# MAIN APP
# =============================================================================

def main():
    st.title("📊 Favorita Forecast Error Report")
    st.markdown("""
    **Where does the model miss?** RMSLE broken down by geography, store and item
    segment, plus the feature importance of the gradient boosting model.
    """)

    overall = load_overall_metrics()
    if overall is None:
        st.error("❌ Could not load report tables. Run `python -m src.report` to create `reports/`.")
        st.stop()

    st.sidebar.header("🔧 Settings")
    group = st.sidebar.selectbox("Dimension Group", list(DIMENSION_GROUPS), index=0)
    metric = st.sidebar.radio("Metric", ['rmsle', 'nwrmsle', 'error_share', 'bias'], index=0)
    top_n = st.sidebar.slider("Segments shown", min_value=5, max_value=60, value=25)

    tab1, tab2, tab3 = st.tabs([
        "📈 Overview",
        "🔍 Segments",
        "🧮 Feature Importance"
    ])

    # ==========================================================================
    # TAB 1: OVERVIEW
    # ==========================================================================
    with tab1:
        st.header("Validation Window Overview")

        col1, col2, col3, col4 = st.columns(4)
        with col1:
            st.metric("RMSLE", f"{overall['rmsle']:.4f}")
        with col2:
            st.metric("NWRMSLE", f"{overall['nwrmsle']:.4f}")
        with col3:
            st.metric("Scored Rows", format_number(overall['n_obs']))
        with col4:
            st.metric("Bias", f"{overall['bias']:+.2f}")

        st.markdown("---")

        date_table = load_segment_table('date')
        if date_table is not None:
            st.subheader("Daily Error")
            date_table['date'] = pd.to_datetime(date_table['date'])
            date_table = date_table.sort_values('date')
            fig = go.Figure()
            fig.add_trace(go.Scatter(x=date_table['date'], y=date_table['rmsle'],
                                     mode='lines+markers', name='RMSLE',
                                     line=dict(color='#1f77b4', width=2)))
            fig.add_trace(go.Scatter(x=date_table['date'], y=date_table['nwrmsle'],
                                     mode='lines+markers', name='NWRMSLE',
                                     line=dict(color='#ff7f0e', width=2, dash='dash')))
            fig.update_layout(xaxis_title='Date', yaxis_title='Error', hovermode='x unified', height=400)
            st.plotly_chart(fig, use_container_width=True)

        matrix = load_error_matrix()
        if matrix is not None:
            st.subheader("RMSLE: Item Family x Store Type")
            fig = px.imshow(matrix, color_continuous_scale='YlOrRd', aspect='auto', text_auto='.2f')
            fig.update_layout(height=max(400, 25 * len(matrix)))
            st.plotly_chart(fig, use_container_width=True)

    # ==========================================================================
    # TAB 2: SEGMENTS
    # ==========================================================================
    with tab2:
        st.header(f"Error by {group.title()}")

        for dim in DIMENSION_GROUPS[group]:
            table = load_segment_table(dim)
            if table is None:
                st.info(f"No breakdown for `{dim}` in the report tables")
                continue

            st.subheader(dim)
            fig = create_segment_chart(table, dim, metric, f"{metric.upper()} by {dim}", top_n)
            st.plotly_chart(fig, use_container_width=True)

            with st.expander(f"Table: error by {dim}"):
                st.dataframe(table, use_container_width=True)

    # ==========================================================================
    # TAB 3: FEATURE IMPORTANCE
    # ==========================================================================
    with tab3:
        st.header("Feature Importance")

        imp = load_feature_importance()
        if imp is None:
            st.warning("Feature importance table not available")
        else:
            bounds = top_n_range(len(imp))
            if bounds is None:
                n_show = len(imp)
            else:
                lo, hi, default = bounds
                n_show = st.slider("Features shown", min_value=lo, max_value=hi, value=default)
            data = imp.head(n_show).iloc[::-1].copy()
            data['cluster'] = data['cluster'].astype(str)

            fig = px.bar(
                data,
                x='gain_pct',
                y='feature',
                orientation='h',
                color='cluster',
                title='Gain by Feature (coloured by importance cluster)'
            )
            fig.update_layout(height=max(400, 22 * len(data)), xaxis_title='Gain (%)')
            st.plotly_chart(fig, use_container_width=True)

            summary = imp.groupby('cluster').agg(
                n_features=('feature', 'count'),
                gain_pct=('gain_pct', 'sum')
            ).reset_index()
            st.dataframe(summary, use_container_width=True)

    st.markdown("---")
    st.markdown("""
    <div style='text-align: center; color: #666;'>
        <p>Favorita Forecast Error Report | Built with Streamlit & Plotly</p>
        <p>Data: Corporacion Favorita Grocery Sales Forecasting (Kaggle)</p>
    </div>
    """, unsafe_allow_html=True)


if __name__ == "__main__":
    main()
