"""初始数据库架构：问卷目录、会话、答案、商品、推荐、历史

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# 版本标识符
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 分类表（自引用树）
    op.create_table(
        "categories",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("parent_id", sa.Uuid(), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_categories_parent_id", "categories", ["parent_id"])

    # 问题表
    op.create_table(
        "questions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("category_id", sa.Uuid(), sa.ForeignKey("categories.id"), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_questions_category_id", "questions", ["category_id"])
    op.create_index("ix_questions_created_at", "questions", ["created_at"])

    # 选项表
    op.create_table(
        "question_options",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("question_id", sa.Uuid(), sa.ForeignKey("questions.id"), nullable=False),
        sa.Column("label", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("value", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_question_options_question_id", "question_options", ["question_id"])

    # 用户档案表
    op.create_table(
        "user_profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(100), nullable=True),
        sa.Column("question_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recommendation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_user_profiles_user_id", "user_profiles", ["user_id"], unique=True)

    # 问卷会话表
    op.create_table(
        "questionnaire_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_profile_id", sa.Uuid(), sa.ForeignKey("user_profiles.id"), nullable=False),
        sa.Column("category_id", sa.Uuid(), sa.ForeignKey("categories.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_questionnaire_sessions_user_profile_id", "questionnaire_sessions", ["user_profile_id"])
    op.create_index("ix_questionnaire_sessions_category_id", "questionnaire_sessions", ["category_id"])
    op.create_index("ix_questionnaire_sessions_status", "questionnaire_sessions", ["status"])

    # 答案表
    op.create_table(
        "answers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("session_id", sa.Uuid(), sa.ForeignKey("questionnaire_sessions.id"), nullable=False),
        sa.Column("question_id", sa.Uuid(), sa.ForeignKey("questions.id"), nullable=False),
        sa.Column("question_option_id", sa.Uuid(), sa.ForeignKey("question_options.id"), nullable=True),
        sa.Column("option_ids", sa.JSON(), nullable=True),
        sa.Column("range_value", sa.Float(), nullable=True),
        sa.Column("text_value", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("session_id", "question_id", name="uq_answers_session_question"),
    )
    op.create_index("ix_answers_session_id", "answers", ["session_id"])
    op.create_index("ix_answers_question_id", "answers", ["question_id"])

    # 商品表
    op.create_table(
        "products",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("category_id", sa.Uuid(), sa.ForeignKey("categories.id"), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("features", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(1000), nullable=True),
        sa.Column("external_url", sa.String(1000), nullable=False, unique=True),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("shop_name", sa.String(200), nullable=True),
        sa.Column("shop_code", sa.String(100), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_products_category_id", "products", ["category_id"])
    op.create_index("ix_products_name", "products", ["name"])
    op.create_index("ix_products_rating", "products", ["rating"])

    # 推荐表
    op.create_table(
        "recommendations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("session_id", sa.Uuid(), sa.ForeignKey("questionnaire_sessions.id"), nullable=False),
        sa.Column("product_id", sa.Uuid(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("session_id", "rank", name="uq_recommendations_session_rank"),
        sa.UniqueConstraint("session_id", "product_id", name="uq_recommendations_session_product"),
    )
    op.create_index("ix_recommendations_session_id", "recommendations", ["session_id"])
    op.create_index("ix_recommendations_product_id", "recommendations", ["product_id"])

    # 用户历史记录表
    op.create_table(
        "user_histories",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_profile_id", sa.Uuid(), sa.ForeignKey("user_profiles.id"), nullable=False),
        sa.Column("session_id", sa.Uuid(), sa.ForeignKey("questionnaire_sessions.id"), nullable=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("completion_rate", sa.Float(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_user_histories_user_profile_id", "user_histories", ["user_profile_id"])
    op.create_index("ix_user_histories_session_id", "user_histories", ["session_id"])
    op.create_index("ix_user_histories_created_at", "user_histories", ["created_at"])


def downgrade() -> None:
    op.drop_table("user_histories")
    op.drop_table("recommendations")
    op.drop_table("products")
    op.drop_table("answers")
    op.drop_table("questionnaire_sessions")
    op.drop_table("user_profiles")
    op.drop_table("question_options")
    op.drop_table("questions")
    op.drop_table("categories")
