"""Public interface for the ``financial_import`` package.

Re-exports the API operations and the public models; no runtime logic here.
"""

from .api import (
    CategoryNotFoundError,
    EmptyCSVError,
    ImportContextError,
    RuleConflictError,
    RuleNotFoundError,
    UploadNotFoundError,
    analyze_import,
    create_category,
    create_rule,
    create_upload,
    delete_rule,
    detect_column_mapping,
    find_uncategorized,
    import_csv_text,
    import_rows,
    list_categories,
    list_rules,
    parse_csv,
    process_import,
    reapply_rule,
    recategorize_transactions,
    regenerate_merchant_keys,
    resolve_mapping,
    sweep_default_transactions,
    update_rule,
)
from .fingerprint import compute_fingerprint
from .merchant import clean_merchant_name, extract_merchant_display_name, generate_merchant_key
from .models import (
    AnalyzeResult,
    ColumnMapping,
    ImportResult,
    PreparedTransaction,
    RecategorizeResult,
    RegenerateResult,
    RowError,
    RuleInput,
    RuleUpdate,
    SweepResult,
)
from .normalizers import parse_amount, parse_date

__all__ = [
    # API
    "parse_csv",
    "detect_column_mapping",
    "resolve_mapping",
    "create_upload",
    "import_rows",
    "process_import",
    "import_csv_text",
    "analyze_import",
    "list_rules",
    "create_rule",
    "update_rule",
    "delete_rule",
    "reapply_rule",
    "sweep_default_transactions",
    "list_categories",
    "create_category",
    "find_uncategorized",
    "regenerate_merchant_keys",
    "recategorize_transactions",
    # Pure helpers
    "parse_amount",
    "parse_date",
    "clean_merchant_name",
    "generate_merchant_key",
    "extract_merchant_display_name",
    "compute_fingerprint",
    # Errors
    "EmptyCSVError",
    "UploadNotFoundError",
    "ImportContextError",
    "RuleConflictError",
    "RuleNotFoundError",
    "CategoryNotFoundError",
    # Models / types
    "ColumnMapping",
    "PreparedTransaction",
    "RowError",
    "ImportResult",
    "AnalyzeResult",
    "SweepResult",
    "RegenerateResult",
    "RecategorizeResult",
    "RuleInput",
    "RuleUpdate",
]
