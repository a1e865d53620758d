# Client Portal Backend
