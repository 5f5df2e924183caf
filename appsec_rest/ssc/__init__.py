from .connection import SSC_DIALECT, SSCConnection, SSCConnectionConfig, escape_ssc_value
from .api import (
    IssueSearchOptions,
    SSCArtifactAPI,
    SSCAttributeAPI,
    SSCIssueAPI,
    SSCJobAPI,
    SSCMetricsAPI,
)
