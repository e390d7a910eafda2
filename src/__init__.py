"""
Favorita Forecast Error Report - Source Package
"""

from .utils import (
    get_project_root,
    get_data_dir,
    get_plots_dir,
    get_reports_dir,
    download_favorita_reference,
    check_data_files,
)

from .data_prep import (
    load_stores_data,
    load_items_data,
    load_validation_data,
    load_predictions,
    load_importance_table,
    save_workspace_snapshot,
    load_workspace_snapshot,
    build_evaluation_frame,
    load_report_inputs,
    generate_synthetic_data,
)

from .metrics import (
    rmsle,
    nwrmsle,
    perishable_weights,
    compute_all_metrics,
)

from .segments import (
    score_frame,
    overall_metrics,
    error_by_segment,
    error_breakdowns,
    error_matrix,
    analyze_zero_vs_nonzero,
    worst_series,
)

from .importance import (
    normalize_importance_table,
    get_feature_importance,
    aggregate_feature_importance,
    cluster_importance,
    summarize_by_feature_group,
)

from .report import (
    run_full_report,
    save_report_tables,
    generate_report_markdown,
)

__version__ = "0.1.0"
__all__ = [
    # Utils
    "get_project_root",
    "get_data_dir",
    "get_plots_dir",
    "get_reports_dir",
    "download_favorita_reference",
    "check_data_files",
    # Data prep
    "load_stores_data",
    "load_items_data",
    "load_validation_data",
    "load_predictions",
    "load_importance_table",
    "save_workspace_snapshot",
    "load_workspace_snapshot",
    "build_evaluation_frame",
    "load_report_inputs",
    "generate_synthetic_data",
    # Metrics
    "rmsle",
    "nwrmsle",
    "perishable_weights",
    "compute_all_metrics",
    # Segments
    "score_frame",
    "overall_metrics",
    "error_by_segment",
    "error_breakdowns",
    "error_matrix",
    "analyze_zero_vs_nonzero",
    "worst_series",
    # Importance
    "normalize_importance_table",
    "get_feature_importance",
    "aggregate_feature_importance",
    "cluster_importance",
    "summarize_by_feature_group",
    # Report
    "run_full_report",
    "save_report_tables",
    "generate_report_markdown",
]
