from sqlmodel import Session, SQLModel, create_engine

from khojpayo import config

connect_args = {}
if config.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(config.DATABASE_URL, connect_args=connect_args)


def create_db_and_tables():
    # register every table on the metadata before creating
    import khojpayo.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session
