# Run from project root: uvicorn storm_writer.main:app --reload

import logging

from fastapi import FastAPI

from storm_writer.api.routes import router

logging.basicConfig(level=logging.INFO)


app = FastAPI(title="STORM-style Research Article Backend")
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("storm_writer.main:app", host="0.0.0.0", port=8000)
