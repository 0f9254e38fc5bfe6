# SQL schema for bookcoach database

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Books
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Ideas (ordered by position; lesson N maps to position N)
CREATE TABLE IF NOT EXISTS ideas (
    id TEXT NOT NULL,
    book_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    position INTEGER NOT NULL,
    PRIMARY KEY (id, book_id),
    FOREIGN KEY (book_id) REFERENCES books (id) ON DELETE CASCADE
);

-- Generated questions, kept so responses can be resolved to facet/difficulty/type
CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    idea_id TEXT NOT NULL,
    book_id TEXT NOT NULL,
    question_type TEXT NOT NULL CHECK(question_type IN ('SingleAnswer', 'MultiAnswer', 'OpenResponse')),
    difficulty TEXT NOT NULL CHECK(difficulty IN ('Easy', 'Medium', 'Hard')),
    facet_tag TEXT NOT NULL,
    text TEXT NOT NULL,
    options TEXT,
    correct_indices TEXT,
    category TEXT NOT NULL DEFAULT 'new' CHECK(category IN ('new', 'review', 'correction', 'curveball')),
    queue_item_id INTEGER,
    created_at TEXT NOT NULL
);

-- Per-idea facet coverage (one row per idea/book, guarded in code)
CREATE TABLE IF NOT EXISTS idea_coverage (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    idea_id TEXT NOT NULL,
    book_id TEXT NOT NULL,
    total_seen INTEGER NOT NULL DEFAULT 0,
    total_correct INTEGER NOT NULL DEFAULT 0,
    mistake_count INTEGER NOT NULL DEFAULT 0,
    mistakes_corrected INTEGER NOT NULL DEFAULT 0,
    covered_categories TEXT NOT NULL DEFAULT '[]',
    coverage_percentage REAL NOT NULL DEFAULT 0,
    is_fully_covered INTEGER NOT NULL DEFAULT 0,
    current_accuracy REAL NOT NULL DEFAULT 0,
    first_attempt_at TEXT,
    last_attempt_at TEXT,
    covered_at TEXT,
    curveball_due_at TEXT,
    curveball_passed INTEGER NOT NULL DEFAULT 0,
    curveball_passed_at TEXT
);

-- Missed facets, owned by a coverage row
CREATE TABLE IF NOT EXISTS missed_facets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    coverage_id INTEGER NOT NULL,
    question_id TEXT NOT NULL,
    concept_key TEXT NOT NULL,
    question_text TEXT NOT NULL DEFAULT '',
    first_missed_at TEXT NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 1,
    is_corrected INTEGER NOT NULL DEFAULT 0,
    corrected_at TEXT,
    FOREIGN KEY (coverage_id) REFERENCES idea_coverage (id) ON DELETE CASCADE
);

-- Review queue (never deleted; completed items kept for history)
CREATE TABLE IF NOT EXISTS review_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    idea_id TEXT NOT NULL,
    book_id TEXT NOT NULL,
    idea_title TEXT NOT NULL DEFAULT '',
    book_title TEXT NOT NULL DEFAULT '',
    question_type TEXT NOT NULL CHECK(question_type IN ('SingleAnswer', 'MultiAnswer', 'OpenResponse')),
    concept_key TEXT NOT NULL,
    difficulty TEXT NOT NULL CHECK(difficulty IN ('Easy', 'Medium', 'Hard')),
    facet_tag TEXT NOT NULL,
    seed_question_text TEXT NOT NULL DEFAULT '',
    is_curveball INTEGER NOT NULL DEFAULT 0,
    added_at TEXT NOT NULL,
    is_completed INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT
);

-- Spaced review state for fully covered ideas (SM-2)
CREATE TABLE IF NOT EXISTS idea_reviews (
    idea_id TEXT NOT NULL,
    book_id TEXT NOT NULL,
    interval_days INTEGER NOT NULL DEFAULT 1,
    ease_factor REAL NOT NULL DEFAULT 2.5,
    streak INTEGER NOT NULL DEFAULT 0,
    due_date TEXT NOT NULL,
    last_review_ts TEXT,
    PRIMARY KEY (idea_id, book_id)
);
"""

# Indexes for performance
INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_ideas_book_position ON ideas (book_id, position);
CREATE INDEX IF NOT EXISTS idx_questions_idea ON questions (idea_id, book_id);
CREATE INDEX IF NOT EXISTS idx_coverage_idea_book ON idea_coverage (idea_id, book_id);
CREATE INDEX IF NOT EXISTS idx_coverage_book_full ON idea_coverage (book_id, is_fully_covered);
CREATE INDEX IF NOT EXISTS idx_missed_facets_coverage ON missed_facets (coverage_id);
CREATE INDEX IF NOT EXISTS idx_review_queue_pending ON review_queue (book_id, is_completed, added_at);
CREATE INDEX IF NOT EXISTS idx_review_queue_concept ON review_queue (idea_id, concept_key);
CREATE INDEX IF NOT EXISTS idx_idea_reviews_due ON idea_reviews (book_id, due_date);
"""
