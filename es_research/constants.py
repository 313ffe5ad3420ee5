"""Constants and default values for the es-research toolkit."""

from __future__ import annotations

# =============================================================================
# API and HTTP Configuration
# =============================================================================

# GitHub API request defaults
API_DEFAULTS = {
    'api_url': 'https://api.github.com',
    'user_agent': 'es-research/1.0.0',
    'per_page': 100,
    'timeout': 30,
    'cache_expire_seconds': 3600,  # 1 hour
}

# Retry configuration
RETRY_CONFIG = {
    'backoff_base': 2,  # Exponential backoff base (2^attempt)
    'max_retries': 3,
}

# HTTP status codes
HTTP_STATUS = {
    'unauthorized': 401,
    'not_found': 404,
    'rate_limited': (403, 429),
    'retryable_errors': (403, 429, 500, 502, 503, 504),
}

# Throttling applied between calls against the search/fetch API
RATE_LIMIT_CONFIG = {
    'request_delay': 1.0,  # Seconds between consecutive search calls
    'remaining_floor': 10,  # Wait for reset when fewer calls remain
    'reset_buffer': 60,  # Seconds added on top of the reset time
}

# =============================================================================
# Research Defaults
# =============================================================================

RESEARCH_DEFAULTS = {
    'sample_size': 1000,
    'confidence_level': 0.95,
    'margin_of_error': 0.05,
    'min_stars': 100,
    'min_forks': 10,
    'created_after': '2020-01-01',
    'language': 'javascript',
    'framework': 'nextjs',
    'target_dependency': 'next',
    'manifest_path': 'package.json',
    'validation_batch_size': 10,
}

# Conservative proportion used for sample size planning
MAX_VARIANCE_PROPORTION = 0.5

# =============================================================================
# Analysis Defaults
# =============================================================================

ANALYSIS_DEFAULTS = {
    'max_files_per_project': 100,
    'max_file_size': 1024 * 1024,  # 1MB
    'analysis_timeout': 30.0,  # Seconds per checker invocation
    'concurrency': 5,
    'project_delay': 1.0,  # Seconds between projects
    'checker_command': 'npx es-guard --json',
}

FILE_PATTERNS = [
    '**/*.js',
    '**/*.jsx',
    '**/*.ts',
    '**/*.tsx',
    '**/next.config.js',
    '**/next.config.mjs',
]

EXCLUDE_PATTERNS = [
    '**/node_modules/**',
    '**/.next/**',
    '**/dist/**',
    '**/build/**',
    '**/.git/**',
    '**/coverage/**',
    '**/.nyc_output/**',
]

# Category assigned to a violation from its file extension
EXTENSION_CATEGORIES = {
    'js': 'javascript',
    'mjs': 'javascript',
    'cjs': 'javascript',
    'jsx': 'javascript',
    'ts': 'typescript',
    'mts': 'typescript',
    'cts': 'typescript',
    'tsx': 'typescript',
}

# Numeric severities emitted by eslint-style checkers
NUMERIC_SEVERITIES = {
    2: 'error',
    1: 'warning',
    0: 'info',
}

# =============================================================================
# Reporting
# =============================================================================

DISPLAY_LIMITS = {
    'top_issues': 10,  # Entries of the issue-type histogram in the report
    'top_issues_per_project': 5,
    'top_projects': 10,  # Projects listed after fetching
}

DEFAULT_DATA_DIR = 'data'
DEFAULT_REPORTS_DIR = 'reports'
DEFAULT_CACHE_DIR = 'cache'

OUTPUT_FILES = {
    'projects': 'projects.json',
    'project_stats': 'project-stats.json',
    'analysis': 'analysis-results.json',
    'summary_json': 'summary-report.json',
    'detailed_json': 'detailed-results.json',
    'summary_yaml': 'summary.yaml',
    'project_csv': 'project-summary.csv',
    'issues_csv': 'issues-detail.csv',
    'statistics_csv': 'statistics-summary.csv',
    'report_md': 'research-report.md',
}

# Star and fork buckets used when describing a sample
STAR_BUCKETS = [
    ('0-100', 0, 100),
    ('101-500', 101, 500),
    ('501-1000', 501, 1000),
    ('1001-5000', 1001, 5000),
    ('5000+', 5001, None),
]

FORK_BUCKETS = [
    ('0-10', 0, 10),
    ('11-50', 11, 50),
    ('51-100', 51, 100),
    ('101-500', 101, 500),
    ('500+', 501, None),
]
